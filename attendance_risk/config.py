"""Application settings read from the environment.

Only the HTTP layer reads these; the scoring functions receive explicit
options and thresholds.
"""

import os
from typing import Dict, List

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

from attendance_risk.models import AnalysisOptions, InterventionThresholds, RiskWeights

THRESHOLD_KEYS = {
    'high': 'high_risk_threshold',
    'medium': 'medium_risk_threshold',
    'low': 'low_risk_threshold',
    'decline': 'decline_rate_threshold',
    'absence': 'absence_trigger',
    'consecutive': 'consecutive_absences_trigger',
}

WEIGHT_KEYS = {'absence', 'lateness', 'trend'}


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    thresholds: InterventionThresholds
    options: AnalysisOptions
    alert_score_threshold: float
    allow_origins: List[str] = ['*']
    max_upload_size_mb: int = 10
    debug: bool = False
    log_level: str = 'INFO'
    date_dayfirst: bool = False


def parse_key_values(value: str) -> Dict[str, float]:
    """
    Parse strings like 'high:70,medium:50' into a dict of floats.

    Raises:
        ValueError: on malformed pairs
    """
    result = {}
    for item in value.split(','):
        if not item.strip():
            continue
        if ':' not in item:
            raise ValueError(f"Expected 'key:value', got '{item.strip()}'")
        key, raw = item.split(':', 1)
        result[key.strip().lower()] = float(raw.strip())
    return result


def parse_thresholds(value: str) -> InterventionThresholds:
    """Parse INTERVENTION_THRESHOLDS; keys not given keep their defaults."""
    fields = {}
    for key, number in parse_key_values(value).items():
        if key not in THRESHOLD_KEYS:
            raise ValueError(f"Unknown threshold '{key}'. Expected one of: {', '.join(THRESHOLD_KEYS)}")
        fields[THRESHOLD_KEYS[key]] = number
    if 'consecutive_absences_trigger' in fields:
        fields['consecutive_absences_trigger'] = int(fields['consecutive_absences_trigger'])
    return InterventionThresholds(**fields)


def parse_weights(value: str) -> RiskWeights:
    """Parse RISK_WEIGHTS such as 'absence:0.6,lateness:0.2,trend:0.2'."""
    weights = parse_key_values(value)
    unknown = set(weights) - WEIGHT_KEYS
    if unknown:
        raise ValueError(f"Unknown weight(s): {', '.join(sorted(unknown))}")
    return RiskWeights(**weights)


def load_settings() -> Settings:
    """Load settings from .env and the process environment."""
    load_dotenv()

    options = AnalysisOptions(
        trend_window=int(os.getenv('TREND_WINDOW', '10')),
        weights=parse_weights(os.getenv('RISK_WEIGHTS', 'absence:0.6,lateness:0.2,trend:0.2')),
    )
    thresholds = parse_thresholds(os.getenv('INTERVENTION_THRESHOLDS', ''))

    return Settings(
        thresholds=thresholds,
        options=options,
        # Unset means alert at the high-risk intervention threshold
        alert_score_threshold=float(os.getenv('ALERT_SCORE_THRESHOLD', thresholds.high_risk_threshold)),
        allow_origins=os.getenv('ALLOW_ORIGINS', '*').split(','),
        max_upload_size_mb=int(os.getenv('MAX_UPLOAD_SIZE_MB', '10')),
        debug=os.getenv('DEBUG', 'False').lower() == 'true',
        log_level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        date_dayfirst=os.getenv('DATE_DAYFIRST', 'False').lower() == 'true',
    )
