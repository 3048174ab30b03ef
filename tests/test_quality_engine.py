"""
Tests for quality scoring and flag derivation
"""
import random

import pytest

from surveyguard.core.flatline import SurveyAnswer
from surveyguard.core.honeypot import HoneypotResult
from surveyguard.core.quality_engine import QualityEngine, QualityInputs
from surveyguard.core.signals import (
    BehaviorSnapshot, ChallengeOutcome, CompletionResult, CompletionStatus, DetectionMethod,
    Fingerprint, FlagReason, Gate, GeoSignal, InvariantViolation, SecurityRisk, VpnSignal,
)

BROWSER_UA = ('Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 '
              '(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36')
BOT_UA = 'Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)'


def behavior(**overrides):
    values = dict(
        mouse_movements=120,
        keyboard_events=40,
        click_pattern=(),
        mouse_curve=(),
        idle_time_seconds=0,
        copy_paste_events=0,
        scroll_events=5,
        focus_events=1,
        resize_events=0,
        suspicious_patterns=frozenset(),
        total_time_ms=300000,
        activity_rate=0.5,
    )
    values.update(overrides)
    return BehaviorSnapshot(**values)


def outcome(gate, passed=True, attempts=1):
    return ChallengeOutcome(gate=gate, passed=passed, attempt_count=attempts, answer='x', timestamp=0.0)


@pytest.fixture
def engine():
    return QualityEngine()


@pytest.fixture
def make_inputs(session, survey_config):
    def factory(elapsed=600, status=CompletionStatus.COMPLETED, **overrides):
        values = dict(
            session=session,
            config=survey_config,
            completion=CompletionResult(status=status, detection_method=DetectionMethod.URL_PATTERN,
                                        timestamp=session.start_time + elapsed),
            outcomes=[outcome(Gate.CAPTCHA), outcome(Gate.TRAP_QUESTION)],
        )
        values.update(overrides)
        return QualityInputs(**values)
    return factory


class TestBaseline:

    def test_clean_session_scores_100(self, engine, make_inputs):
        record = engine.evaluate(make_inputs(behavior=behavior(), user_agent=BROWSER_UA))
        assert record.data_quality_score == 100
        assert record.security_risk is SecurityRisk.LOW
        assert record.flags == frozenset()

    def test_missing_completion_raises(self, engine, make_inputs):
        with pytest.raises(InvariantViolation):
            engine.evaluate(make_inputs(completion=None))

    def test_interim_assessment_without_completion(self, engine, make_inputs):
        record = engine.assess_interim(make_inputs(completion=None, vpn=VpnSignal(vpn=True)))
        assert record.data_quality_score == 70
        assert FlagReason.VPN_DETECTED in record.flags

    def test_missing_signals_are_neutral(self, engine, session, survey_config):
        inputs = QualityInputs(
            session=session, config=survey_config,
            completion=CompletionResult(status=CompletionStatus.DISQUALIFIED,
                                        detection_method=DetectionMethod.POST_MESSAGE,
                                        timestamp=session.start_time + 5),
        )
        record = engine.evaluate(inputs)
        assert record.data_quality_score == 100
        assert record.flags == frozenset()


class TestPenalties:

    def test_blacklisted_referrer(self, engine, make_inputs):
        record = engine.evaluate(make_inputs(referrer='https://suspicious.com/offers'))

        assert FlagReason.BLACKLISTED_DOMAIN in record.flags
        assert record.data_quality_score <= 50
        assert record.security_risk is SecurityRisk.MEDIUM
        assert 'suspicious.com' in record.details['BLACKLISTED_DOMAIN']

    def test_blacklisted_referrer_with_vpn_is_high_risk(self, engine, make_inputs):
        record = engine.evaluate(make_inputs(referrer='suspicious.com',
                                             vpn=VpnSignal(proxy=True, service='NordVPN')))
        assert record.data_quality_score == 20
        assert record.security_risk is SecurityRisk.HIGH
        assert {FlagReason.BLACKLISTED_DOMAIN, FlagReason.VPN_DETECTED,
                FlagReason.LOW_QUALITY_SCORE} <= record.flags

    def test_geo_hostname_blacklisted(self, engine, make_inputs):
        geo = GeoSignal(ip='203.0.113.9', hostname='host-9.suspicious.com')
        record = engine.evaluate(make_inputs(geo=geo))
        assert FlagReason.BLACKLISTED_DOMAIN in record.flags

    def test_vpn_ignored_when_disabled(self, engine, make_inputs, survey_config):
        survey_config.enable_vpn_detection = False
        record = engine.evaluate(make_inputs(vpn=VpnSignal(vpn=True)))
        assert record.data_quality_score == 100

    def test_hosting_alone_is_not_vpn(self, engine, make_inputs):
        record = engine.evaluate(make_inputs(vpn=VpnSignal(hosting=True)))
        assert FlagReason.VPN_DETECTED not in record.flags

    def test_suspicious_behavior_penalised_without_flag(self, engine, make_inputs):
        record = engine.evaluate(make_inputs(behavior=behavior(copy_paste_events=9)))
        assert record.data_quality_score == 60
        assert dict(record.penalties) == {'suspicious_behavior': 40}

    def test_bot_check_needs_two_indicators(self, engine, make_inputs):
        fingerprint = Fingerprint(timezone='Europe/Berlin', device_id='d1')
        geo = GeoSignal(ip='203.0.113.9', timezone='America/Chicago')

        single = engine.evaluate(make_inputs(fingerprint=fingerprint, geo=geo))
        assert FlagReason.BOT_CHECK_FLAG not in single.flags

        honeypot = HoneypotResult(triggered=True, score=40, level='medium')
        double = engine.evaluate(make_inputs(fingerprint=fingerprint, geo=geo, honeypot=honeypot))
        assert FlagReason.BOT_CHECK_FLAG in double.flags
        assert double.data_quality_score == 20
        assert FlagReason.LOW_QUALITY_SCORE in double.flags

    def test_bot_user_agent_counts_as_automation(self, engine, make_inputs):
        honeypot = HoneypotResult(triggered=True, score=40, level='medium')
        record = engine.evaluate(make_inputs(user_agent=BOT_UA, honeypot=honeypot))
        assert FlagReason.BOT_CHECK_FLAG in record.flags
        assert 'automation' in record.details['BOT_CHECK_FLAG']

    def test_all_penalties_floor_at_zero(self, engine, make_inputs):
        record = engine.evaluate(make_inputs(
            vpn=VpnSignal(vpn=True),
            referrer='suspicious.com',
            behavior=behavior(copy_paste_events=20, activity_rate=80.0),
            fingerprint=Fingerprint(webdriver=True, timezone='Asia/Tokyo'),
            geo=GeoSignal(ip='203.0.113.9', timezone='America/Chicago'),
            honeypot=HoneypotResult(triggered=True, score=40, level='medium'),
        ))
        assert record.data_quality_score == 0
        assert record.security_risk is SecurityRisk.HIGH


class TestFlagOnlyChecks:

    def test_duplicate_fingerprint(self, engine, make_inputs):
        fingerprint = Fingerprint(device_id='abc123')
        assert FlagReason.DUPLICATE_FINGERPRINT in engine.evaluate(
            make_inputs(fingerprint=fingerprint, duplicate_sightings=2)).flags
        assert FlagReason.DUPLICATE_FINGERPRINT not in engine.evaluate(
            make_inputs(fingerprint=fingerprint, duplicate_sightings=0)).flags
        assert FlagReason.DUPLICATE_FINGERPRINT not in engine.evaluate(
            make_inputs(fingerprint=Fingerprint(), duplicate_sightings=2)).flags

    def test_captcha_failures(self, engine, make_inputs):
        never = engine.evaluate(make_inputs(outcomes=[]))
        assert FlagReason.CAPTCHA_FAILURE in never.flags

        many = engine.evaluate(make_inputs(outcomes=[outcome(Gate.CAPTCHA, attempts=5)]))
        assert FlagReason.CAPTCHA_FAILURE in many.flags

        fine = engine.evaluate(make_inputs(outcomes=[outcome(Gate.CAPTCHA, attempts=3)]))
        assert FlagReason.CAPTCHA_FAILURE not in fine.flags

    def test_trap_failure(self, engine, make_inputs):
        record = engine.evaluate(make_inputs(
            outcomes=[outcome(Gate.CAPTCHA), outcome(Gate.TRAP_QUESTION, passed=False)]))
        assert FlagReason.TRAP_QUESTION_FAILED in record.flags
        assert record.data_quality_score == 100

    def test_too_fast_completion(self, engine, make_inputs):
        assert FlagReason.SPEED_VIOLATION in engine.evaluate(make_inputs(elapsed=30)).flags
        assert FlagReason.SPEED_VIOLATION not in engine.evaluate(make_inputs(elapsed=90)).flags

    def test_too_slow_completion(self, engine, make_inputs):
        record = engine.evaluate(make_inputs(elapsed=10 * 3600))
        assert FlagReason.SPEED_VIOLATION in record.flags
        assert 'maximum is 3600s' in record.details[FlagReason.SPEED_VIOLATION.value]
        assert FlagReason.SPEED_VIOLATION not in engine.evaluate(make_inputs(elapsed=3500)).flags

    def test_speed_ignored_for_disqualified(self, engine, make_inputs):
        record = engine.evaluate(make_inputs(elapsed=10, status=CompletionStatus.DISQUALIFIED))
        assert FlagReason.SPEED_VIOLATION not in record.flags

    def test_speed_checks_can_be_disabled(self, engine, make_inputs, survey_config):
        survey_config.enable_speed_checks = False
        assert FlagReason.SPEED_VIOLATION not in engine.evaluate(make_inputs(elapsed=5)).flags

    def test_metronomic_clicking(self, engine, make_inputs):
        clicks = tuple(1_000_000 + i * 120 for i in range(8))
        record = engine.evaluate(make_inputs(behavior=behavior(click_pattern=clicks)))
        assert FlagReason.SPEED_VIOLATION in record.flags

    def test_human_clicking(self, engine, make_inputs):
        clicks = (0, 900, 2400, 2700, 5100, 7900, 8200)
        record = engine.evaluate(make_inputs(behavior=behavior(click_pattern=clicks)))
        assert FlagReason.SPEED_VIOLATION not in record.flags

    def test_flat_line_answers(self, engine, make_inputs):
        answers = [SurveyAnswer(question_id=str(i), question_type='scale', answer=3) for i in range(6)]
        record = engine.evaluate(make_inputs(answers=answers))
        assert FlagReason.FLAT_LINE_RESPONSE in record.flags

    def test_machine_written_text_noted_without_penalty(self, engine, make_inputs):
        answers = [SurveyAnswer(question_id='1', question_type='text',
                                answer='As an AI language model, I cannot have opinions about coffee.')]
        record = engine.evaluate(make_inputs(answers=answers))

        assert 'Direct AI self-identification' in record.details['ai_generated_text']
        assert record.data_quality_score == 100
        assert record.flags == frozenset()

    def test_plain_text_not_noted(self, engine, make_inputs):
        answers = [SurveyAnswer(question_id='1', question_type='text', answer='tastes fine, bit pricey')]
        record = engine.evaluate(make_inputs(answers=answers))
        assert 'ai_generated_text' not in record.details


class TestScoreBounds:

    def test_random_signal_combinations(self, engine, make_inputs):
        rng = random.Random(7)
        for _ in range(200):
            inputs = make_inputs(
                elapsed=rng.choice([5, 45, 600]),
                vpn=rng.choice([None, VpnSignal(), VpnSignal(vpn=True), VpnSignal(tor=True)]),
                referrer=rng.choice([None, 'https://google.com', 'suspicious.com', 'x@mailinator.com']),
                behavior=rng.choice([None, behavior(), behavior(copy_paste_events=10)]),
                fingerprint=rng.choice([None, Fingerprint(device_id='d', webdriver=True, timezone='UTC')]),
                geo=rng.choice([None, GeoSignal(ip='198.51.100.1', timezone='Asia/Tokyo')]),
                honeypot=rng.choice([None, HoneypotResult(triggered=True, score=30, level='medium')]),
                duplicate_sightings=rng.choice([None, 0, 3]),
            )
            record = engine.evaluate(inputs)

            assert 0 <= record.data_quality_score <= 100
            assert record.security_risk is engine.risk_for(record.data_quality_score)
            assert (FlagReason.LOW_QUALITY_SCORE in record.flags) == (record.data_quality_score < 50)

    def test_risk_bands(self, engine):
        assert engine.risk_for(0) is SecurityRisk.HIGH
        assert engine.risk_for(49) is SecurityRisk.HIGH
        assert engine.risk_for(50) is SecurityRisk.MEDIUM
        assert engine.risk_for(79) is SecurityRisk.MEDIUM
        assert engine.risk_for(80) is SecurityRisk.LOW
        assert engine.risk_for(100) is SecurityRisk.LOW

    def test_record_serialization(self, engine, make_inputs):
        data = engine.evaluate(make_inputs(referrer='suspicious.com')).to_dict()
        assert data['dataQualityScore'] == 50
        assert data['securityRisk'] == 'medium'
        assert {'reason': 'BLACKLISTED_DOMAIN', 'severity': 'high'} in data['flags']
