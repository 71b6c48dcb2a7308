"""
Import/export codec for journal bundles.

Export format: a JSON object with exactly ``healthData``, ``medications`` and
``standardPattern``. The transport token is the same object as minified JSON,
UTF-8 encoded, then base64 encoded so it can travel through a clipboard.
"""

import base64
import binascii
import json
from datetime import date
from pathlib import Path
from typing import Any

import structlog
from pydantic import ValidationError

from healthjournal.domain.errors import BundleValidationError
from healthjournal.domain.models import JournalBundle
from healthjournal.services.consistency import clean_pattern

logger = structlog.get_logger(__name__)

REQUIRED_KEYS = ("healthData", "medications", "standardPattern")
EXPORT_FILENAME_TEMPLATE = "health_monitor_data_{date}.json"


def export_bundle(bundle: JournalBundle) -> dict[str, Any]:
    """Plain, JSON-ready snapshot of the bundle using the export keys."""
    return bundle.model_dump(mode="json", by_alias=True)


def to_json(bundle: JournalBundle, *, indent: int | None = 2) -> str:
    """Serialize for a backup file (pretty) or a token (``indent=None``, minified)."""
    return bundle.model_dump_json(by_alias=True, indent=indent)


def _format_errors(exc: ValidationError) -> list[str]:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "<root>"
        problems.append(f"{location}: {error['msg']}")
    return problems


def validate_bundle(raw: Any) -> JournalBundle:
    """
    Validate a decoded JSON payload and build a bundle from it.

    Checks the three top-level keys, then the nested shape: ``medications`` is
    a list of strings, ``standardPattern`` maps slot labels to lists of
    strings, ``healthData`` maps ISO dates to slot -> entry mappings. Readings
    must be finite numbers. Pattern slots with empty lists are dropped.

    Raises:
        BundleValidationError: with one line per problem in ``problems``.
    """
    if not isinstance(raw, dict):
        raise BundleValidationError(
            f"Bundle must be a JSON object, got {type(raw).__name__}",
            [f"<root>: expected object, got {type(raw).__name__}"],
        )

    missing = [key for key in REQUIRED_KEYS if key not in raw]
    if missing:
        raise BundleValidationError(
            f"Bundle is missing required keys: {', '.join(missing)}",
            [f"{key}: missing" for key in missing],
        )

    try:
        bundle = JournalBundle.model_validate(raw)
    except ValidationError as e:
        problems = _format_errors(e)
        raise BundleValidationError(
            f"Bundle has {len(problems)} invalid field(s): " + "; ".join(problems), problems
        ) from e

    if len(set(bundle.medications)) != len(bundle.medications):
        duplicates = sorted({m for m in bundle.medications if bundle.medications.count(m) > 1})
        raise BundleValidationError(
            f"Medication list contains duplicates: {duplicates}",
            [f"medications: duplicate {name!r}" for name in duplicates],
        )

    empty_slots = sorted(slot for slot, meds in bundle.standard_pattern.items() if not meds)
    if empty_slots:
        logger.info("import_pattern_empty_slots_dropped", slots=empty_slots)
        bundle = bundle.model_copy(
            update={"standard_pattern": clean_pattern(bundle.standard_pattern)}
        )

    dangling = bundle.dangling_medications()
    if dangling:
        # Accepted as-is; the imported catalog is authoritative
        logger.warning("import_references_unknown_medications", medications=sorted(dangling))

    return bundle


def parse_json(text: str) -> JournalBundle:
    """Parse a JSON document (backup file contents) into a validated bundle."""
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        raise BundleValidationError(f"Bundle is not valid JSON: {e}", [f"<root>: {e}"]) from e
    return validate_bundle(raw)


def encode_token(bundle: JournalBundle) -> str:
    """Encode a bundle as a single printable base64 token."""
    payload = to_json(bundle, indent=None).encode("utf-8")
    return base64.b64encode(payload).decode("ascii")


def decode_token(token: str) -> JournalBundle:
    """Exact inverse of ``encode_token``. Surrounding whitespace is ignored."""
    text = token.strip()
    if not text:
        raise BundleValidationError("Token is empty", ["<root>: empty token"])
    try:
        payload = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as e:
        raise BundleValidationError(f"Token is not valid base64: {e}", [f"<root>: {e}"]) from e
    try:
        decoded = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise BundleValidationError(f"Token is not UTF-8 text: {e}", [f"<root>: {e}"]) from e
    return parse_json(decoded)


def default_export_filename(today: date | None = None) -> str:
    return EXPORT_FILENAME_TEMPLATE.format(date=(today or date.today()).isoformat())


def write_export_file(bundle: JournalBundle, path: Path) -> Path:
    """Write a pretty-printed backup. A directory ``path`` gets the default file name."""
    if path.is_dir():
        path = path / default_export_filename()
    path.write_text(to_json(bundle) + "\n", encoding="utf-8")
    logger.info("bundle_exported", path=str(path), dates=len(bundle.health_data))
    return path


def read_export_file(path: Path) -> JournalBundle:
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise BundleValidationError(f"{path} is not UTF-8 text: {e}", [f"<root>: {e}"]) from e
    return parse_json(text)
