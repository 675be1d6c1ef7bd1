"""Tests for the engine's data records."""

import pytest

from selfheal.core.enums import RecoveryAction
from selfheal.models.classification import FailureInfo
from selfheal.models.element import BoundingBox, ElementSnapshot
from selfheal.models.fingerprint import VisualFingerprint
from selfheal.models.recovery import RecoveryContext, RecoveryOutcome, StrategyStatsView
from selfheal.models.selector import SelectorDescriptor
from selfheal.models.semantic import SemanticProfile


class TestSelectorDescriptor:
    """Tests for SelectorDescriptor construction and helpers."""

    def test_from_mapping_collects_alternatives(self):
        descriptor = SelectorDescriptor.from_mapping(
            {
                "selector": "#submit",
                "fallbacks": ["button[type=submit]", "#submit"],
                "alternative_selectors": [".btn-primary"],
                "xpath": "//button[@id='submit']",
                "role": "button",
                "text": "Submit",
            },
            name="submit_button",
        )

        assert descriptor.primary == "#submit"
        assert descriptor.css == ("button[type=submit]", ".btn-primary")
        assert descriptor.xpath == ("//button[@id='submit']",)
        assert descriptor.accessibility.role == "button"
        assert descriptor.accessibility.text == "Submit"
        assert descriptor.key == "submit_button"

    def test_from_mapping_promotes_first_alternative(self):
        descriptor = SelectorDescriptor.from_mapping({"css": ["#a", "#b"]})

        assert descriptor.primary == "#a"
        assert descriptor.css == ("#b",)

    def test_coerce(self):
        assert SelectorDescriptor.coerce(None) is None
        assert SelectorDescriptor.coerce("") is None
        assert SelectorDescriptor.coerce("#x").primary == "#x"
        existing = SelectorDescriptor(primary="#y")
        assert SelectorDescriptor.coerce(existing) is existing
        assert SelectorDescriptor.coerce({"primary": "#z"}).primary == "#z"

    def test_next_alternative_skips_used(self):
        descriptor = SelectorDescriptor(primary="#a", css=("#b", "#c"))

        assert descriptor.next_alternative() == "#b"
        assert descriptor.next_alternative(("#b",)) == "#c"
        assert descriptor.next_alternative(("#b", "#c")) is None

    def test_with_primary(self):
        descriptor = SelectorDescriptor(primary="#a", css=("#b", "#c"))

        promoted = descriptor.with_primary("#c")

        assert promoted.primary == "#c"
        assert promoted.css == ("#a", "#b")
        assert promoted.name == "#a"

    def test_key_falls_back_to_xpath(self):
        assert SelectorDescriptor(xpath=("//div",)).key == "//div"
        assert SelectorDescriptor().key == "anonymous"


class TestFailureInfo:
    """Tests for FailureInfo.from_exception."""

    def test_captures_chain(self):
        try:
            try:
                raise KeyError("inner")
            except KeyError as inner:
                raise ValueError("outer failure") from inner
        except ValueError as e:
            info = FailureInfo.from_exception(e)

        assert info.message == "outer failure"
        assert info.error_name == "ValueError"
        assert "ValueError: outer failure" in info.stack
        assert "KeyError" in info.stack

    def test_code_attribute(self):
        error = OSError("connection reset")
        error.code = "ECONNRESET"

        assert FailureInfo.from_exception(error).code == "ECONNRESET"

    def test_empty_message_uses_type_name(self):
        assert FailureInfo.from_exception(RuntimeError()).message == "RuntimeError"


class TestElementSnapshot:
    """Tests for ElementSnapshot.from_dict."""

    def test_from_dict(self):
        snapshot = ElementSnapshot.from_dict(
            {
                "tag": "INPUT",
                "attributes": {"id": "email", "role": "textbox", "name": "email"},
                "className": "form-control wide",
                "bounding_box": {"x": 10, "y": 20, "width": 200, "height": 30},
                "siblings": [{"tag": "LABEL", "text": "Email"}, None],
            }
        )

        assert snapshot.tag == "input"
        assert snapshot.id == "email"
        assert snapshot.role == "textbox"
        assert snapshot.classes == ("form-control", "wide")
        assert snapshot.bounding_box.area == 6000
        assert len(snapshot.siblings) == 1
        assert snapshot.attr("name") == "email"
        assert snapshot.attr("missing", "n/a") == "n/a"

    def test_characteristics(self):
        snapshot = ElementSnapshot(tag="button", text="x" * 300)

        characteristics = snapshot.characteristics()

        assert len(characteristics["text"]) == 100
        assert characteristics["bounding_box"] is None


class TestBoundingBox:
    """Tests for BoundingBox geometry."""

    def test_intersection(self):
        a = BoundingBox(0, 0, 10, 10)
        b = BoundingBox(5, 5, 10, 10)

        assert a.intersection_area(b) == 25
        assert a.intersection_area(BoundingBox(20, 20, 5, 5)) == 0.0

    def test_aspect_ratio_zero_height(self):
        assert BoundingBox(0, 0, 10, 0).aspect_ratio == 0.0


class TestVisualFingerprint:
    """Tests for VisualFingerprint serialization."""

    def test_dict_round_trip(self):
        data = {
            "perceptual_hash": "ffee00ddccbbaa99",
            "bounding_box": {"x": 1, "y": 2, "width": 3, "height": 4},
            "features": {"width": 3, "height": 4, "aspect_ratio": 0.75, "area": 12},
            "surrounding_context": {"parent": {"tag": "form", "id": "login"}, "siblings": []},
            "captured_at": "2024-01-01T00:00:00+00:00",
            "page_url": "https://example.com",
            "viewport": [1280, 720],
        }

        fingerprint = VisualFingerprint.from_dict(data)

        assert fingerprint.viewport == (1280, 720)
        assert fingerprint.surrounding_context.parent.id == "login"
        assert VisualFingerprint.from_dict(fingerprint.to_dict()) == fingerprint


class TestSemanticProfile:
    """Tests for SemanticProfile.from_dict."""

    def test_purpose_string_and_top_level_keywords(self):
        profile = SemanticProfile.from_dict(
            {"element_type": "button", "purpose": "submit", "keywords": ["Login", "Sign"]}
        )

        assert profile.element_type == "button"
        assert profile.purpose.primary == "submit"
        assert profile.content.keywords == ("login", "sign")
        assert profile.business_context is None

    def test_nested_parts(self):
        profile = SemanticProfile.from_dict(
            {
                "purpose": {"primary": "input", "secondary": ["email"]},
                "content": {"action_words": ["Enter"]},
                "business_context": {"domain": "auth", "workflow": "login"},
            }
        )

        assert profile.purpose.secondary == ("email",)
        assert profile.content.action_words == ("enter",)
        assert profile.business_context.domain == "auth"
        assert profile.business_context.step == "unknown"


class TestRecoveryOutcome:
    """Tests for RecoveryOutcome and StrategyStatsView."""

    def test_to_dict(self):
        outcome = RecoveryOutcome(
            success=True,
            action=RecoveryAction.USE_ALTERNATIVE,
            strategy="alternative-selector",
            context_updates={"selector": "#b"},
            strategies_attempted=("wait-and-retry", "alternative-selector"),
        )

        data = outcome.to_dict()

        assert data["action"] == "use-alternative"
        assert data["context_updates"] == {"selector": "#b"}
        assert data["strategies_attempted"] == ["wait-and-retry", "alternative-selector"]
        assert outcome.circuit_broken is False

    def test_circuit_broken(self):
        assert RecoveryOutcome(success=False, action=RecoveryAction.CIRCUIT_BREAK).circuit_broken

    def test_stats_view_rate(self):
        assert StrategyStatsView().success_rate == 0.0
        assert StrategyStatsView(successes=3, attempts=4).success_rate == pytest.approx(0.75)


class TestRecoveryContext:
    """Tests for RecoveryContext construction."""

    def test_defaults_are_empty_read_only_mappings(self, classification_factory):
        ctx = RecoveryContext(error=RuntimeError("x"), classification=classification_factory())

        assert dict(ctx.context) == {}
        assert dict(ctx.history) == {}
        assert ctx.get("selector", "none") == "none"
        with pytest.raises(TypeError):
            ctx.context["selector"] = "#a"

    def test_defaults_are_not_shared(self, classification_factory):
        first = RecoveryContext(error=RuntimeError("a"), classification=classification_factory())
        second = RecoveryContext(error=RuntimeError("b"), classification=classification_factory())

        assert first.context is not second.context
