from datetime import datetime, timedelta, timezone as dt_timezone

from django.test import SimpleTestCase, TestCase
from django.utils import timezone

from giveaways.exceptions import PersistentValidationError
from giveaways.models import Campaign, GiveAwayRule
from giveaways.rules import (
    CustomObjectiveRule,
    DirectObjectiveId,
    LegacyKeywordRule,
    RuleWindow,
    StructuredRule,
    normalize_rule,
    parse_rule_config,
)

CAMPAIGN_WINDOW = RuleWindow(
    start=datetime(2024, 3, 1, tzinfo=dt_timezone.utc),
    end=datetime(2024, 3, 31, tzinfo=dt_timezone.utc),
)


class ParseRuleConfigTests(SimpleTestCase):
    def test_json_object_is_structured(self):
        parsed = parse_rule_config(
            '{"action_id": "daily_login", "minimum_count": 3, "start": "2024-03-05", "end": "2024-03-10"}',
            CAMPAIGN_WINDOW,
        )

        self.assertIsInstance(parsed, StructuredRule)
        self.assertEqual(parsed.action_id, "daily_login")
        self.assertEqual(parsed.minimum_count, 3)
        self.assertEqual(parsed.window.start, datetime(2024, 3, 5, tzinfo=dt_timezone.utc))
        self.assertEqual(parsed.window.end.date().isoformat(), "2024-03-10")
        self.assertEqual(parsed.window.end.hour, 23)

    def test_json_without_window_uses_campaign_window(self):
        parsed = parse_rule_config('{"action_id": "share"}', CAMPAIGN_WINDOW)

        self.assertEqual(parsed.window, CAMPAIGN_WINDOW)
        self.assertEqual(parsed.minimum_count, 1)

    def test_legacy_keywords(self):
        parsed = parse_rule_config("action=quiz_done; min=5; from=2024-01-01; to=2024-02-01T12:00:00Z", CAMPAIGN_WINDOW)

        self.assertIsInstance(parsed, LegacyKeywordRule)
        self.assertEqual(parsed.action_id, "quiz_done")
        self.assertEqual(parsed.minimum_count, 5)
        self.assertEqual(parsed.window.end, datetime(2024, 2, 1, 12, tzinfo=dt_timezone.utc))

    def test_legacy_window_all(self):
        parsed = parse_rule_config("action=quiz_done;window=all", CAMPAIGN_WINDOW)

        self.assertTrue(parsed.window.all_time)

    def test_custom_objective(self):
        parsed = parse_rule_config("custom:referral_streak:4", CAMPAIGN_WINDOW)

        self.assertIsInstance(parsed, CustomObjectiveRule)
        self.assertEqual(parsed.action_id, "custom.referral_streak")
        self.assertEqual(parsed.minimum_count, 4)
        self.assertEqual(parsed.window, CAMPAIGN_WINDOW)

    def test_direct_objective_id(self):
        parsed = parse_rule_config("obj_2024_spring", CAMPAIGN_WINDOW)

        self.assertIsInstance(parsed, DirectObjectiveId)
        self.assertEqual(parsed.action_id, "obj_2024_spring")
        self.assertEqual(parsed.minimum_count, 1)

    def test_unusable_configurations_are_rejected(self):
        for raw in (
            "",
            "   ",
            "{not json",
            "[1, 2]",
            '{"minimum_count": 2}',
            "action=quiz_done;color=red",
            "action=quiz_done;min=0",
            "action=quiz_done;from=2024-02-01;to=2024-01-01",
            "action=quiz_done;from=yesterday",
            "custom:",
            "custom:a:b:c",
            "two words",
        ):
            with self.subTest(raw=raw):
                with self.assertRaises(PersistentValidationError):
                    parse_rule_config(raw, CAMPAIGN_WINDOW)

    def test_window_needs_both_bounds_unless_all_time(self):
        with self.assertRaises(PersistentValidationError):
            RuleWindow(start=CAMPAIGN_WINDOW.start).validate()
        self.assertTrue(RuleWindow(all_time=True).validate().all_time)


class NormalizeRuleTests(TestCase):
    def setUp(self):
        now = timezone.now()
        self.campaign = Campaign.objects.create(
            name="Quiz week",
            status=Campaign.Status.UPCOMING,
            start_date=now,
            end_date=now + timedelta(days=7),
        )

    def test_raw_config_is_parsed_once_and_written_back(self):
        rule = GiveAwayRule.objects.create(
            campaign=self.campaign,
            prize_kind=GiveAwayRule.PrizeKind.MERCHANDISE,
            raw_config="custom:quiz_master:2",
        )

        parsed = normalize_rule(rule)

        rule.refresh_from_db()
        self.assertIsInstance(parsed, CustomObjectiveRule)
        self.assertEqual(rule.action_id, "custom.quiz_master")
        self.assertEqual(rule.minimum_count, 2)
        self.assertEqual(rule.rule_start, self.campaign.start_date)
        self.assertEqual(rule.rule_format, GiveAwayRule.RuleFormat.CUSTOM_OBJECTIVE)
        self.assertTrue(rule.is_normalized)
        self.assertIsInstance(normalize_rule(rule), StructuredRule)

    def test_structured_fields_without_raw_config(self):
        rule = GiveAwayRule.objects.create(
            campaign=self.campaign,
            prize_kind=GiveAwayRule.PrizeKind.LOGO,
            action_id="upload_avatar",
            all_time=True,
        )

        parsed = normalize_rule(rule)

        self.assertEqual(parsed.action_id, "upload_avatar")
        self.assertTrue(parsed.window.all_time)

    def test_structured_fields_without_window_use_campaign_window(self):
        rule = GiveAwayRule.objects.create(
            campaign=self.campaign,
            prize_kind=GiveAwayRule.PrizeKind.LOGO,
            action_id="upload_avatar",
        )

        parsed = normalize_rule(rule)

        rule.refresh_from_db()
        self.assertEqual(parsed.window.start, self.campaign.start_date)
        self.assertEqual(rule.rule_start, self.campaign.start_date)
        self.assertEqual(rule.rule_end, self.campaign.end_date)

    def test_structured_fields_with_half_a_window_are_rejected(self):
        rule = GiveAwayRule.objects.create(
            campaign=self.campaign,
            prize_kind=GiveAwayRule.PrizeKind.LOGO,
            action_id="upload_avatar",
            rule_start=self.campaign.start_date,
        )

        with self.assertRaises(PersistentValidationError):
            normalize_rule(rule)

    def test_missing_action_is_rejected(self):
        rule = GiveAwayRule.objects.create(
            campaign=self.campaign,
            prize_kind=GiveAwayRule.PrizeKind.LOGO,
            all_time=True,
        )

        with self.assertRaises(PersistentValidationError):
            normalize_rule(rule)
        rule.refresh_from_db()
        self.assertFalse(rule.is_normalized)
