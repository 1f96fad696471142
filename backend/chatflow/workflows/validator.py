# /chatflow/workflows/validator.py

"""
Pure validation functions for data captured by flow steps.

Each validator receives the raw reply and either returns the normalized
value or raises InputValidationError with the message shown to the user.
``validate_input`` wraps them into a ValidationResult for the flow engine.

All functions are:
- Pure (no side effects)
- Deterministic (same input = same output)
- No database access
- No logging
"""

import re
from typing import Any, Callable, Dict, Optional, TypedDict

from chatflow.config import strings
from chatflow.exceptions import InputValidationError

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_RE = re.compile(r"^[\d\s()\-+]{10,15}$")
NON_DIGIT_RE = re.compile(r"\D")


class ValidationResult(TypedDict):
    """Result of validating captured input."""
    is_valid: bool
    value: Optional[Any]
    message: Optional[str]


def _digits(value: str) -> str:
    return NON_DIGIT_RE.sub("", value or "")


def is_valid_cpf(cpf: str) -> bool:
    """Check the two CPF verification digits."""
    if len(cpf) != 11 or not cpf.isdigit() or cpf == cpf[0] * 11:
        return False

    for position in (9, 10):
        total = sum(int(cpf[i]) * (position + 1 - i) for i in range(position))
        digit = 11 - (total % 11)
        if digit >= 10:
            digit = 0
        if digit != int(cpf[position]):
            return False
    return True


def is_valid_cnpj(cnpj: str) -> bool:
    """Check the two CNPJ verification digits."""
    if len(cnpj) != 14 or not cnpj.isdigit() or cnpj == cnpj[0] * 14:
        return False

    for length in (12, 13):
        total = 0
        weight = length - 7
        for i in range(length):
            total += int(cnpj[i]) * weight
            weight -= 1
            if weight < 2:
                weight = 9
        digit = 0 if total % 11 < 2 else 11 - (total % 11)
        if digit != int(cnpj[length]):
            return False
    return True


def validate_text(value: str) -> str:
    if not value or len(value.strip()) < 2:
        raise InputValidationError(strings.VALIDATION_TEXT, "text")
    return value.strip()


def validate_email(value: str) -> str:
    value = (value or "").strip()
    if not EMAIL_RE.match(value):
        raise InputValidationError(strings.VALIDATION_EMAIL, "email")
    return value.lower()


def validate_phone(value: str) -> str:
    value = (value or "").strip()
    cleaned = _digits(value)
    if not PHONE_RE.match(value) or len(cleaned) < 10:
        raise InputValidationError(strings.VALIDATION_PHONE, "phone")
    return cleaned


def validate_cpf(value: str) -> str:
    cpf = _digits(value)
    if not is_valid_cpf(cpf):
        raise InputValidationError(strings.VALIDATION_CPF, "cpf")
    return cpf


def validate_cnpj(value: str) -> str:
    cnpj = _digits(value)
    if not is_valid_cnpj(cnpj):
        raise InputValidationError(strings.VALIDATION_CNPJ, "cnpj")
    return cnpj


def validate_cpf_cnpj(value: str) -> str:
    document = _digits(value)
    if len(document) == 11:
        return validate_cpf(document)
    if len(document) == 14:
        return validate_cnpj(document)
    raise InputValidationError(strings.VALIDATION_CPF_CNPJ, "cpf_cnpj")


def validate_number(value: str) -> float:
    try:
        number = float((value or "").strip().replace(",", "."))
    except ValueError:
        raise InputValidationError(strings.VALIDATION_NUMBER, "number")
    if number != number or number in (float("inf"), float("-inf")):
        raise InputValidationError(strings.VALIDATION_NUMBER, "number")
    return number


def validate_option(value: str) -> str:
    return (value or "").strip()


VALIDATORS: Dict[str, Callable[[str], Any]] = {
    "text": validate_text,
    "email": validate_email,
    "phone": validate_phone,
    "cpf": validate_cpf,
    "cnpj": validate_cnpj,
    "cpf_cnpj": validate_cpf_cnpj,
    "number": validate_number,
    "option": validate_option,
}


def validate_input(value: str, validator_name: str) -> ValidationResult:
    """
    Run the named validator against a raw reply.

    Args:
        value: The raw text sent by the user
        validator_name: One of the VALIDATORS keys

    Returns:
        ValidationResult with the normalized value when valid, or the
        user-facing error message when not
    """
    validator = VALIDATORS.get(validator_name)
    if validator is None:
        # Unknown validators accept the trimmed input unchanged.
        return {"is_valid": True, "value": (value or "").strip(), "message": None}

    try:
        return {"is_valid": True, "value": validator(value), "message": None}
    except InputValidationError as e:
        return {"is_valid": False, "value": None, "message": str(e)}
