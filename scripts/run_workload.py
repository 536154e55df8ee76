from __future__ import annotations

import asyncio
import json
import os
import time
from pathlib import Path
from statistics import mean
from typing import List
import subprocess
import sys
from contextlib import suppress

import httpx
import matplotlib.pyplot as plt

REPORT_DIR = Path(os.getenv("REPORT_DIR", "reports"))
REPORT_DIR.mkdir(parents=True, exist_ok=True)
ROOT_DIR = Path(__file__).resolve().parents[1]

SERVICE_PORT = int(os.getenv("PORT", "8080"))
SERVICE_URL = os.getenv("SERVICE_URL", f"http://127.0.0.1:{SERVICE_PORT}").rstrip("/")
STRINGS_URL = f"{SERVICE_URL}/api/strings"
TOTAL_CREATES = int(os.getenv("TOTAL_CREATES", "200"))
CONCURRENCY_VALUES = [int(v) for v in os.getenv("CONCURRENCY_VALUES", "1,5,10,25,50").split(",") if v.strip()]
SPAWN_SERVICE = os.getenv("SPAWN_SERVICE", "1").lower() not in {"0", "false", "no"}


def start_service() -> subprocess.Popen:
    env = os.environ.copy()
    env["PORT"] = str(SERVICE_PORT)
    cmd = [
        sys.executable,
        "-m",
        "uvicorn",
        "app.main:app",
        "--host",
        "127.0.0.1",
        "--port",
        str(SERVICE_PORT),
    ]
    return subprocess.Popen(
        cmd,
        cwd=ROOT_DIR,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        env=env,
    )


def stop_service(proc: subprocess.Popen) -> None:
    with suppress(Exception):
        proc.terminate()
    with suppress(Exception):
        proc.wait(timeout=5)
    if proc.poll() is None:
        with suppress(Exception):
            proc.kill()


async def wait_for_service_ready(timeout: float = 20.0) -> None:
    deadline = time.time() + timeout
    async with httpx.AsyncClient(timeout=2) as client:
        while time.time() < deadline:
            try:
                response = await client.get(STRINGS_URL)
                if response.status_code == 200:
                    return
            except httpx.HTTPError:
                pass
            await asyncio.sleep(0.5)
    raise RuntimeError(f"Service not ready: {SERVICE_URL}")


async def run_creates(client: httpx.AsyncClient, concurrency: int) -> tuple[float, List[int]]:
    latencies: List[float] = []
    keys: List[int] = []
    semaphore = asyncio.Semaphore(concurrency)

    async def create_op(idx: int) -> None:
        async with semaphore:
            start = time.perf_counter()
            response = await client.post(STRINGS_URL, json={"value": f"value-{concurrency}-{idx}"})
            response.raise_for_status()
            latencies.append((time.perf_counter() - start) * 1000)
            keys.append(response.json()["key"])

    await asyncio.gather(*(asyncio.create_task(create_op(i)) for i in range(TOTAL_CREATES)))
    return mean(latencies), keys


def check_keys(created: List[int], listed: List[dict]) -> dict:
    listed_keys = {item.get("key") for item in listed}
    return {
        "created": len(created),
        "duplicates": len(created) - len(set(created)),
        "missing_from_list": sorted(set(created) - listed_keys),
    }


def plot_results(results: List[dict]) -> Path:
    fig, ax = plt.subplots(figsize=(6, 4))
    ax.plot([r["concurrency"] for r in results], [r["avg_latency_ms"] for r in results], marker="o")
    ax.set_xlabel("Concurrent creates")
    ax.set_ylabel("Average create latency (ms)")
    ax.set_title("Create concurrency vs latency")
    ax.grid(True, linestyle="--", alpha=0.5)
    output_path = REPORT_DIR / "concurrency_vs_latency.png"
    fig.tight_layout()
    fig.savefig(output_path, dpi=200)
    plt.close(fig)
    return output_path


async def run_analysis() -> None:
    await wait_for_service_ready()
    results = []
    created: List[int] = []
    async with httpx.AsyncClient(timeout=15) as client:
        for concurrency in CONCURRENCY_VALUES:
            avg_latency, keys = await run_creates(client, concurrency)
            created.extend(keys)
            results.append({"concurrency": concurrency, "avg_latency_ms": avg_latency})
            print(f"Concurrency {concurrency}: avg latency {avg_latency:.2f} ms")

        response = await client.get(STRINGS_URL)
        response.raise_for_status()
        listed = response.json()

    key_check = check_keys(created, listed)
    plot_path = plot_results(results)

    summary = {
        "service_url": SERVICE_URL,
        "results": results,
        "keys": key_check,
        "plot": str(plot_path),
    }

    summary_path = REPORT_DIR / "perf_summary.json"
    summary_path.write_text(json.dumps(summary, indent=2))
    print(f"Summary written to {summary_path}")
    print(f"Plot saved to {plot_path}")
    if key_check["duplicates"] or key_check["missing_from_list"]:
        raise SystemExit("key check failed: " + json.dumps(key_check))


def main() -> None:
    proc = None
    try:
        if SPAWN_SERVICE:
            proc = start_service()
        asyncio.run(run_analysis())
    finally:
        if proc is not None:
            stop_service(proc)


if __name__ == "__main__":
    main()
