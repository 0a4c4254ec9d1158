"""Compensation stack for multi-store writes.

Each successful write pushes the action that undoes it. If the block fails,
the actions run last-pushed-first; a failing compensation is logged and the
next one still runs. The original exception always propagates.

    with Saga("create recipe") as saga:
        recipe_id = metadata.insert_recipe(...)
        saga.push("remove recipe row", metadata.purge_recipe, recipe_id)
        blobs.write(key, data)
        saga.push("remove body blob", blobs.delete, key)
"""

import logging
from typing import Any, Callable

logger = logging.getLogger("recipebook.saga")


class Saga:
    def __init__(self, name: str):
        self.name = name
        self._compensations: list[tuple[str, Callable[..., Any], tuple]] = []

    def push(self, description: str, action: Callable[..., Any], *args: Any) -> None:
        self._compensations.append((description, action, args))

    @property
    def pending(self) -> list[str]:
        return [description for description, _, _ in self._compensations]

    def compensate(self) -> None:
        while self._compensations:
            description, action, args = self._compensations.pop()
            try:
                result = action(*args)
            except Exception:
                logger.exception(f"{self.name}: compensation '{description}' failed")
                continue
            if result is False:
                logger.error(f"{self.name}: compensation '{description}' reported failure")
            else:
                logger.info(f"{self.name}: compensated '{description}'")

    def __enter__(self) -> "Saga":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if exc_type is None:
            self._compensations.clear()
        else:
            logger.warning(f"{self.name} failed ({exc_type.__name__}), rolling back")
            self.compensate()
        return False
