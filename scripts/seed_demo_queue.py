"""Utility that launches a sample Redis Docker container seeded with cppq queues."""

from __future__ import annotations

import argparse
import subprocess
import sys
import time
from pathlib import Path

import redis

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from qdash.config import CONFIG_FILE, AppConfig, EndpointProfileConfig, load_config, save_config
from qdash.connections import build_demo_dataset

DEFAULT_CONTAINER = "qdash-sample-redis"
DEFAULT_PORT = 6380
DEFAULT_PREFIX = "cppq"
DOCKER_IMAGE = "redis:7-alpine"
PROFILE_NAME = "Docker Sample"


def run(cmd: list[str], *, check: bool = True, **kwargs) -> subprocess.CompletedProcess[str]:
    print("$", " ".join(cmd))
    return subprocess.run(cmd, check=check, text=True, **kwargs)


def container_exists(name: str) -> bool:
    result = subprocess.run(
        ["docker", "ps", "-a", "--filter", f"name={name}", "--format", "{{.ID}}"],
        text=True,
        capture_output=True,
    )
    return bool(result.stdout.strip())


def start_container(name: str, port: int) -> None:
    if container_exists(name):
        print(f"Container '{name}' already exists. Reusing it.")
        run(["docker", "start", name], check=False)
    else:
        run(["docker", "run", "-d", "--name", name, "-p", f"{port}:6379", DOCKER_IMAGE])


def wait_for_start(url: str, retries: int = 15, delay: float = 1.0) -> redis.Redis:
    client = redis.Redis.from_url(url, decode_responses=True)
    for _ in range(retries):
        try:
            client.ping()
            return client
        except redis.exceptions.ConnectionError:
            time.sleep(delay)
    raise SystemExit(f"Redis at {url} did not become ready.")


def seed_data(client: redis.Redis, prefix: str) -> None:
    dataset = build_demo_dataset(prefix)
    pipe = client.pipeline()
    for key in dataset.keys():
        pipe.delete(key)
    for key, members in dataset.sets.items():
        pipe.sadd(key, *members)
    for key, items in dataset.lists.items():
        pipe.rpush(key, *items)
    for key, fields in dataset.hashes.items():
        pipe.hset(key, mapping=fields)
    pipe.execute()
    print(f"Seeded {len(dataset.keys())} keys under '{prefix}:'.")


def update_config(url: str) -> None:
    try:
        config = load_config()
    except Exception:
        config = AppConfig()
    if config.profile_named(PROFILE_NAME) is not None:
        print(f"Profile '{PROFILE_NAME}' already present in config; leaving as-is.")
        return
    profiles = [*config.profiles, EndpointProfileConfig(name=PROFILE_NAME, url=url)]
    save_config(config.model_copy(update={"profiles": profiles}))
    print(f"Added '{PROFILE_NAME}' profile to {CONFIG_FILE}.")


def parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--container", default=DEFAULT_CONTAINER, help="Docker container name")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Host port to expose Redis on")
    parser.add_argument("--prefix", default=DEFAULT_PREFIX, help="Queue key prefix")
    parser.add_argument("--no-docker", action="store_true", help="Seed an already running Redis instead")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv or sys.argv[1:])
    url = f"redis://localhost:{args.port}/0"
    if not args.no_docker:
        try:
            start_container(args.container, args.port)
        except FileNotFoundError:
            print("Docker is not installed or not on PATH.")
            return 1
    client = wait_for_start(url)
    seed_data(client, args.prefix)
    update_config(url)
    print(f"Sample queues are ready. Connect using the '{PROFILE_NAME}' profile or {url}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
