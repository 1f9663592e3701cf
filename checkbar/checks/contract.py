"""Result contract — validates what a check command prints on stdout.

Every check must print one JSON object:

    {"result": bool, "changing"?: bool, "url"?: str|null, "info"?: [[str, str], ...]}

Extra keys are ignored. Anything else is a contract violation and turns the
check into an Error state with the diagnostic shown in its info list.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, StrictBool, StrictStr, ValidationError, ValidationInfo, field_validator

from .runner import RunResult


class CheckStatus(str, Enum):
    PENDING = "pending"
    OK = "ok"
    FAILING = "failing"
    ERROR = "error"


class ContractError(Exception):
    """Raised when command output does not satisfy the result contract."""


class CheckContract(BaseModel):
    """Validated form of a check's JSON output."""

    model_config = {"extra": "ignore"}

    result: StrictBool
    changing: StrictBool = False
    url: StrictStr | None = None
    info: list[tuple[StrictStr, StrictStr]] = []

    @field_validator("changing", "info", mode="before")
    @classmethod
    def _null_means_default(cls, value: object, validation: ValidationInfo) -> object:
        # an explicit null behaves like an absent key
        if value is None:
            return False if validation.field_name == "changing" else []
        return value


@dataclass(frozen=True)
class Evaluation:
    """How one run maps onto a CheckState."""

    status: CheckStatus
    changing: bool = False
    url: str | None = None
    info: tuple[tuple[str, str], ...] = field(default_factory=tuple)


def _describe(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(p) for p in err["loc"]) or "<root>"
        parts.append(f"{location}: {err['msg']}")
    return "; ".join(parts)


def parse_contract(stdout: str) -> CheckContract:
    """Parse stdout as the result contract. Raises ContractError."""
    text = stdout.strip()
    if not text:
        raise ContractError("no output on stdout")
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise ContractError(f"invalid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise ContractError(f"expected a JSON object, got {type(payload).__name__}")
    if "result" not in payload:
        raise ContractError("missing required field 'result'")
    try:
        return CheckContract.model_validate(payload)
    except ValidationError as e:
        raise ContractError(_describe(e)) from e


def error_evaluation(message: str, run: RunResult | None = None) -> Evaluation:
    info = [("Error", message)]
    if run is not None and run.failure is None and run.exit_code != 0:
        info.append(("Exit status", str(run.exit_code)))
    return Evaluation(status=CheckStatus.ERROR, info=tuple(info))


def evaluate(run: RunResult) -> Evaluation:
    """Classify a finished run. Never raises."""
    if run.failure is not None:
        return error_evaluation(run.failure, run)

    try:
        contract = parse_contract(run.stdout)
    except ContractError as e:
        return error_evaluation(str(e), run)

    return Evaluation(
        status=CheckStatus.OK if contract.result else CheckStatus.FAILING,
        changing=contract.changing,
        url=contract.url,
        info=tuple(contract.info),
    )
