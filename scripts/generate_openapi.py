"""Generate the OpenAPI spec for the Budgetwise API."""

import importlib
import json
from pathlib import Path
from typing import Callable

from fastapi import FastAPI

from services.budgetwise.app.settings import BudgetwiseSettings

SERVICES = {
    "budgetwise": "services.budgetwise.app:create_app",
}


def load_app(factory_path: str) -> FastAPI:
    module_path, factory_name = factory_path.split(":")
    module = importlib.import_module(module_path)
    factory: Callable[..., FastAPI] = getattr(module, factory_name)
    # Schema generation needs no database or tracing backend
    return factory(BudgetwiseSettings(storage_backend="memory", otel_enabled=False))


def main() -> None:
    out_dir = Path("openapi")
    out_dir.mkdir(exist_ok=True)
    for name, dotted in SERVICES.items():
        app = load_app(dotted)
        schema = app.openapi()
        target = out_dir / f"{name}.json"
        target.write_text(json.dumps(schema, indent=2))
        print(f"Wrote {target}")


if __name__ == "__main__":
    main()
