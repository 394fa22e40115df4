"""
Secret resolution and per-run secret scoping.

Resolved values live only inside a RunSecrets scope. They are handed to a
step's process environment and masked out of its captured output; they are
never stored on the Run, in step results or in the database.
"""

import logging
import os
from typing import Dict, Iterable, Mapping, Optional, Protocol

from controller.src.errors import PipelineRunError
from controller.src.models.step import StepConfig

logger = logging.getLogger(__name__)

MASK = "***"

class SecretNotFoundError(PipelineRunError):
    """Raised when a referenced secret has no bound value."""

    def __init__(self, missing: Iterable[str]):
        self.missing = sorted(missing)
        super().__init__(f"Secrets not found: {', '.join(self.missing)}")

class SecretStore(Protocol):
    def get(self, name: str) -> Optional[str]:
        ...

class EnvSecretStore:
    """Reads secrets from the worker environment, e.g. PIPELINEX_SECRET_AWS_KEY."""

    def __init__(self, prefix: str = "PIPELINEX_SECRET_", environ: Optional[Mapping[str, str]] = None):
        self.prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def get(self, name: str) -> Optional[str]:
        return self._environ.get(f"{self.prefix}{name}")

class StaticSecretStore:
    """In-memory store, mostly for local runs and tests."""

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values = dict(values or {})

    def get(self, name: str) -> Optional[str]:
        return self._values.get(name)

class SecretResolver:
    def __init__(self, store: SecretStore):
        self.store = store

    def resolve(self, names: Iterable[str]) -> Dict[str, str]:
        """
        Look up every name in the store.
        Raises SecretNotFoundError naming all missing secrets.
        """
        resolved = {}
        missing = []
        for name in sorted(set(names)):
            value = self.store.get(name)
            if value is None:
                missing.append(name)
            else:
                resolved[name] = value

        if missing:
            raise SecretNotFoundError(missing)

        logger.debug(f"Resolved {len(resolved)} secret(s)")
        return resolved

class RunSecrets:
    """Secret values for the lifetime of one run."""

    def __init__(self, values: Optional[Dict[str, str]] = None):
        self._values = dict(values or {})

    @classmethod
    def open(cls, resolver: SecretResolver, names: Iterable[str]) -> "RunSecrets":
        return cls(resolver.resolve(names))

    def for_step(self, step: StepConfig) -> Dict[str, str]:
        """Environment entries for the secrets this step declares, and only those."""
        env = {}
        for var, name in step.secret_bindings().items():
            if name not in self._values:
                raise SecretNotFoundError([name])
            env[var] = self._values[name]
        return env

    def mask(self, text: str) -> str:
        # Longest first so a secret containing another is masked whole
        for value in sorted(self._values.values(), key=len, reverse=True):
            if value:
                text = text.replace(value, MASK)
        return text

    @property
    def longest(self) -> int:
        """Length of the longest secret value, 0 when there are none."""
        return max((len(v.encode("utf-8")) for v in self._values.values()), default=0)

    def clear(self):
        self._values.clear()

    def __len__(self) -> int:
        return len(self._values)
