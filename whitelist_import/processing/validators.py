import re
from abc import ABC, abstractmethod

from whitelist_import.config.settings import Settings


class BaseLineValidator(ABC):
    """Contract for address acceptance policies."""

    @abstractmethod
    def is_valid(self, normalized_line: str) -> bool:
        """Decide whether a trimmed, lower-cased, non-empty line is acceptable.

        Must be pure: no I/O, no state carried between calls.
        """


class NonEmptyValidator(BaseLineValidator):
    """Accepts any non-empty string."""

    def is_valid(self, normalized_line: str) -> bool:
        return bool(normalized_line)


class EvmAddressValidator(BaseLineValidator):
    """Accepts ``0x``-prefixed 20-byte hex addresses."""

    _PATTERN = re.compile(r"0x[0-9a-f]{40}")

    def is_valid(self, normalized_line: str) -> bool:
        return self._PATTERN.fullmatch(normalized_line) is not None


class ValidatorFactory:
    """Creates the address validator named in settings."""

    VALIDATORS: dict[str, type[BaseLineValidator]] = {
        "any": NonEmptyValidator,
        "evm": EvmAddressValidator,
    }

    @classmethod
    def create(cls, settings: Settings) -> BaseLineValidator:
        name = settings.address_validator.lower()
        validator_cls = cls.VALIDATORS.get(name)
        if validator_cls is None:
            raise ValueError(
                f"Unknown address validator '{name}'. Choose from: {list(cls.VALIDATORS)}"
            )
        return validator_cls()
