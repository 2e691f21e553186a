import os
from typing import Any, Dict, Mapping, Optional

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from .errors import ConfigurationError
from .models import ImportOptions

TRUTHY = {"1", "true", "yes", "on"}
FALSY = {"0", "false", "no", "off"}


def is_truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    text = str(value).strip().lower()
    if text in TRUTHY:
        return True
    if text in FALSY or text == "":
        return False
    raise ValueError(f"not a boolean: {value!r}")


# env var -> (option name, parser)
ENV_OVERRIDES: Dict[str, tuple] = {
    "MASS_IMPORT_THRESHOLD": ("threshold", float),
    "MASS_IMPORT_SEARCH_RADIUS": ("search_radius_meters", float),
    "MASS_IMPORT_TIE_BAND": ("tie_band_width", float),
    "MASS_IMPORT_MAX_CONSECUTIVE_ERRORS": ("max_consecutive_errors", int),
    "MASS_IMPORT_DRY_RUN": ("dry_run", is_truthy),
    "MASS_IMPORT_IDEMPOTENT": ("idempotent", is_truthy),
}


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    for var, (option, parser) in ENV_OVERRIDES.items():
        raw = environ.get(var)
        if raw is None or raw.strip() == "":
            continue
        try:
            overrides[option] = parser(raw)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {var}: {raw!r}", {"variable": var}) from e
    return overrides


def validate_options(options: ImportOptions) -> ImportOptions:
    checks = [
        (options.threshold > 0, "threshold must be > 0"),
        (options.search_radius_meters > 0, "search_radius_meters must be > 0"),
        (options.tie_band_width >= 0, "tie_band_width must be >= 0"),
        (options.max_consecutive_errors >= 1, "max_consecutive_errors must be >= 1"),
        (options.offset >= 0, "offset must be >= 0"),
        (options.limit is None or options.limit >= 0, "limit must be >= 0"),
        (options.title_fallback_limit >= 0, "title_fallback_limit must be >= 0"),
    ]
    for ok, message in checks:
        if not ok:
            raise ConfigurationError(message, {"options": options.model_dump(exclude={"weights"})})

    if options.search_radius_meters < options.weights.location_decay_meters:
        logger.warning(
            f"search_radius_meters ({options.search_radius_meters}) is smaller than the location decay "
            f"({options.weights.location_decay_meters}m); near-edge duplicates will not be scored"
        )
    return options


def load_options(
    config: Optional[Dict[str, Any]] = None,
    environ: Optional[Mapping[str, str]] = None,
    overrides: Optional[Dict[str, Any]] = None,
) -> ImportOptions:
    """
    Build ImportOptions from a run config.

    Precedence (lowest first): model defaults, config["options"], environment
    variables, explicit overrides (e.g. CLI flags; None values are ignored).
    """
    environ = os.environ if environ is None else environ
    values: Dict[str, Any] = dict((config or {}).get("options", {}) or {})
    values.update(_env_overrides(environ))
    values.update({k: v for k, v in (overrides or {}).items() if v is not None})

    try:
        options = ImportOptions.model_validate(values)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid import options: {e.error_count()} error(s)", {"errors": e.errors(include_url=False)}) from e

    return validate_options(options)
