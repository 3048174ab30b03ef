# ==========================================
# surveyguard/core/signals.py
"""
Shared data types for the respondent quality pipeline
"""
import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


class InvariantViolation(RuntimeError):
    """Raised when the pipeline reaches a state that correct code never produces"""


class InvalidTransition(InvariantViolation):
    """Raised when an operation is called in the wrong state machine step"""


class CrossOriginError(Exception):
    """Raised by a frame probe while the embedded survey is on a foreign origin"""


class RegistryError(Exception):
    """Raised when the link/session registry cannot be reached or rejects a call"""


class Gate(str, Enum):
    CAPTCHA = "CAPTCHA"
    TRAP_QUESTION = "TRAP_QUESTION"


class CompletionStatus(str, Enum):
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    DISQUALIFIED = "DISQUALIFIED"
    QUOTA_FULL = "QUOTA_FULL"
    TIMEOUT = "TIMEOUT"

    @property
    def is_terminal(self) -> bool:
        return self is not CompletionStatus.STARTED


class DetectionMethod(str, Enum):
    URL_PATTERN = "url_pattern"
    DOMAIN_DEFAULT = "domain_default"
    POST_MESSAGE = "post_message"
    LOAD_EVENT = "load_event"
    TIMEOUT = "timeout"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SecurityRisk(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FlagReason(str, Enum):
    BLACKLISTED_DOMAIN = "BLACKLISTED_DOMAIN"
    VPN_DETECTED = "VPN_DETECTED"
    DUPLICATE_FINGERPRINT = "DUPLICATE_FINGERPRINT"
    CAPTCHA_FAILURE = "CAPTCHA_FAILURE"
    TRAP_QUESTION_FAILED = "TRAP_QUESTION_FAILED"
    SPEED_VIOLATION = "SPEED_VIOLATION"
    BOT_CHECK_FLAG = "BOT_CHECK_FLAG"
    FLAT_LINE_RESPONSE = "FLAT_LINE_RESPONSE"
    LOW_QUALITY_SCORE = "LOW_QUALITY_SCORE"

    @property
    def severity(self) -> Severity:
        return FLAG_SEVERITY[self]


FLAG_SEVERITY = {
    FlagReason.BLACKLISTED_DOMAIN: Severity.HIGH,
    FlagReason.VPN_DETECTED: Severity.MEDIUM,
    FlagReason.DUPLICATE_FINGERPRINT: Severity.HIGH,
    FlagReason.CAPTCHA_FAILURE: Severity.MEDIUM,
    FlagReason.TRAP_QUESTION_FAILED: Severity.MEDIUM,
    FlagReason.SPEED_VIOLATION: Severity.MEDIUM,
    FlagReason.BOT_CHECK_FLAG: Severity.CRITICAL,
    FlagReason.FLAT_LINE_RESPONSE: Severity.MEDIUM,
    FlagReason.LOW_QUALITY_SCORE: Severity.HIGH,
}


@dataclass
class Session:
    """One respondent's attempt at a survey link"""
    project_id: str
    uid: str
    resp_id: str
    vendor_id: Optional[str] = None
    start_time: float = field(default_factory=time.time)
    token: Optional[str] = None


@dataclass(frozen=True)
class MousePoint:
    x: float
    y: float
    timestamp: int


@dataclass(frozen=True)
class BehaviorSnapshot:
    """Point-in-time aggregate of interaction counters"""
    mouse_movements: int
    keyboard_events: int
    click_pattern: Tuple[int, ...]
    mouse_curve: Tuple[MousePoint, ...]
    idle_time_seconds: int
    copy_paste_events: int
    scroll_events: int
    focus_events: int
    resize_events: int
    suspicious_patterns: FrozenSet[str]
    total_time_ms: int
    activity_rate: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mouseMovements': self.mouse_movements,
            'keyboardEvents': self.keyboard_events,
            'clickPattern': list(self.click_pattern),
            'mouseCurve': [asdict(point) for point in self.mouse_curve],
            'idleTimeSeconds': self.idle_time_seconds,
            'copyPasteEvents': self.copy_paste_events,
            'scrollEvents': self.scroll_events,
            'focusEvents': self.focus_events,
            'resizeEvents': self.resize_events,
            'suspiciousPatterns': sorted(self.suspicious_patterns),
            'totalTimeMs': self.total_time_ms,
            'activityRate': round(self.activity_rate, 3),
        }


@dataclass(frozen=True)
class Fingerprint:
    """Device identity signal; any field may be absent"""
    canvas_fingerprint: Optional[str] = None
    webgl_fingerprint: Optional[str] = None
    audio_fingerprint: Optional[str] = None
    webgl_vendor: Optional[str] = None
    webgl_renderer: Optional[str] = None
    device_memory: Optional[float] = None
    hardware_concurrency: Optional[int] = None
    max_touch_points: Optional[int] = None
    screen_resolution: Optional[str] = None
    color_depth: Optional[int] = None
    language: Optional[str] = None
    timezone: Optional[str] = None
    user_agent: Optional[str] = None
    webdriver: Optional[bool] = None
    headless: Optional[bool] = None
    device_id: Optional[str] = None

    @property
    def automation_suspected(self) -> bool:
        return bool(self.webdriver or self.headless)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ChallengeOutcome:
    gate: Gate
    passed: bool
    attempt_count: int
    answer: Any
    timestamp: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'gate': self.gate.value,
            'passed': self.passed,
            'attemptCount': self.attempt_count,
            'answer': self.answer,
            'timestamp': self.timestamp,
        }


@dataclass(frozen=True)
class CompletionResult:
    status: CompletionStatus
    detection_method: DetectionMethod
    timestamp: float
    completion_url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'detectionMethod': self.detection_method.value,
            'timestamp': self.timestamp,
            'completionUrl': self.completion_url,
            'metadata': dict(self.metadata),
        }


@dataclass(frozen=True)
class QualityRecord:
    """Final aggregated quality verdict for one session"""
    data_quality_score: int
    security_risk: SecurityRisk
    flags: FrozenSet[FlagReason]
    penalties: Tuple[Tuple[str, int], ...] = ()
    details: Dict[str, str] = field(default_factory=dict)
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'dataQualityScore': self.data_quality_score,
            'securityRisk': self.security_risk.value,
            'flags': [
                {'reason': flag.value, 'severity': flag.severity.value}
                for flag in sorted(self.flags, key=lambda f: f.value)
            ],
            'penalties': {name: amount for name, amount in self.penalties},
            'details': dict(self.details),
            'createdAt': self.created_at,
        }


@dataclass(frozen=True)
class GeoSignal:
    ip: str
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None
    org: Optional[str] = None
    hostname: Optional[str] = None
    timezone: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class VpnSignal:
    vpn: bool = False
    proxy: bool = False
    tor: bool = False
    hosting: bool = False
    service: Optional[str] = None

    @property
    def detected(self) -> bool:
        return self.vpn or self.proxy or self.tor

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['detected'] = self.detected
        return data


def _pick(data: Dict[str, Any], snake: str, camel: str, default: Any) -> Any:
    if snake in data and data[snake] is not None:
        return data[snake]
    if camel in data and data[camel] is not None:
        return data[camel]
    return default


@dataclass
class SurveyConfig:
    """Per-project configuration supplied when a session starts"""
    difficulty: Difficulty = Difficulty.EASY
    min_completion_time: float = 60.0
    max_completion_time: float = 3600.0
    blacklisted_domains: List[str] = field(default_factory=list)
    enable_vpn_detection: bool = True
    enable_trap_questions: bool = True
    enable_speed_checks: bool = True
    enable_honeypot: bool = True
    completion_domain: Optional[str] = None
    trusted_origins: List[str] = field(default_factory=list)
    quality_floor: int = 50

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'SurveyConfig':
        """Build from stored settings, accepting snake_case or camelCase keys"""
        data = data or {}
        defaults = cls()
        difficulty = _pick(data, 'difficulty', 'difficulty', defaults.difficulty)
        try:
            difficulty = Difficulty(str(getattr(difficulty, 'value', difficulty)).lower())
        except ValueError:
            difficulty = Difficulty.EASY

        return cls(
            difficulty=difficulty,
            min_completion_time=float(_pick(data, 'min_completion_time', 'minCompletionTime',
                                            defaults.min_completion_time)),
            max_completion_time=float(_pick(data, 'max_completion_time', 'maxCompletionTime',
                                            defaults.max_completion_time)),
            blacklisted_domains=[d.strip().lower() for d in
                                 _pick(data, 'blacklisted_domains', 'blacklistedDomains', []) if d],
            enable_vpn_detection=bool(_pick(data, 'enable_vpn_detection', 'enableVPNDetection',
                                            defaults.enable_vpn_detection)),
            enable_trap_questions=bool(_pick(data, 'enable_trap_questions', 'enableTrapQuestions',
                                             defaults.enable_trap_questions)),
            enable_speed_checks=bool(_pick(data, 'enable_speed_checks', 'enableSpeedChecks',
                                           defaults.enable_speed_checks)),
            enable_honeypot=bool(_pick(data, 'enable_honeypot', 'enableHoneypot',
                                       defaults.enable_honeypot)),
            completion_domain=_pick(data, 'completion_domain', 'completionDomain', None),
            trusted_origins=list(_pick(data, 'trusted_origins', 'trustedOrigins', [])),
            quality_floor=int(_pick(data, 'quality_floor', 'qualityFloor', defaults.quality_floor)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'difficulty': self.difficulty.value,
            'minCompletionTime': self.min_completion_time,
            'maxCompletionTime': self.max_completion_time,
            'blacklistedDomains': list(self.blacklisted_domains),
            'enableVPNDetection': self.enable_vpn_detection,
            'enableTrapQuestions': self.enable_trap_questions,
            'enableSpeedChecks': self.enable_speed_checks,
            'enableHoneypot': self.enable_honeypot,
            'completionDomain': self.completion_domain,
            'trustedOrigins': list(self.trusted_origins),
            'qualityFloor': self.quality_floor,
        }
