"""Tests for the observation decoder"""

import json

from planrunner.executor.observations import (
    decode_observations,
    describe,
    needs_human_review,
    read_observations,
    split_review_lines,
)
from planrunner.ledger.schemas import BlockerObservation, CompletionObservation, FindingObservation


class TestDecodeObservations:
    """Each entry is decoded on its own"""

    def test_all_three_variants(self):
        """Blocker, finding and completion entries decode to their models"""
        decoded = decode_observations(
            [
                {"type": "blocker", "title": "No network"},
                {"type": "finding", "title": "Dead code", "description": "utils.py", "file": "utils.py"},
                {"type": "completion", "title": "Auth done"},
            ]
        )

        assert [type(o) for o in decoded.accepted] == [
            BlockerObservation,
            FindingObservation,
            CompletionObservation,
        ]
        assert decoded.rejected == []

    def test_bad_entries_rejected_good_kept(self):
        """A non-conforming entry is reported without hiding the valid ones"""
        decoded = decode_observations(
            [
                {"type": "finding", "title": "Kept"},
                {"type": "warning", "title": "Unknown type"},
                {"type": "blocker"},
                {"type": "completion", "title": "x", "severity": "high"},
                "just a string",
            ],
            source="01-01.json",
        )

        assert [o.title for o in decoded.accepted] == ["Kept"]
        assert len(decoded.rejected) == 4
        assert decoded.rejected[1].raw == {"type": "blocker"}
        assert any("title" in reason for reason in decoded.rejected[1].reasons)
        assert any("severity" in reason for reason in decoded.rejected[2].reasons)

    def test_empty_input(self):
        """None decodes to nothing"""
        assert decode_observations(None).accepted == []


class TestReadObservations:
    def test_reads_from_unvalidated_file(self, tmp_path):
        """Observations are read even when the rest of the record is invalid"""
        path = tmp_path / "01-01.json"
        path.write_text(
            json.dumps({"tasks": "broken", "observations": [{"type": "finding", "title": "A"}]}),
            encoding="utf-8",
        )

        assert [o.title for o in read_observations(path).accepted] == ["A"]

    def test_unreadable_file(self, tmp_path):
        """Undecodable JSON yields no observations and no rejections"""
        path = tmp_path / "bad.json"
        path.write_text("nope", encoding="utf-8")

        decoded = read_observations(path)

        assert decoded.accepted == [] and decoded.rejected == []

    def test_missing_list(self, tmp_path):
        """A non-list observations field is ignored"""
        path = tmp_path / "01-01.json"
        path.write_text(json.dumps({"observations": "none"}), encoding="utf-8")

        assert read_observations(path).accepted == []


class TestHumanReview:
    def test_finding_phrases(self):
        """Findings that ask for a person need review"""
        assert needs_human_review(
            FindingObservation(title="UI", description="Layout NEEDS HUMAN eyes")
        )
        assert needs_human_review(
            FindingObservation(title="UI", description="Visual verification needed on mobile")
        )
        assert not needs_human_review(FindingObservation(title="UI", description="All automated"))

    def test_only_findings_qualify(self):
        """Blockers never go to the verification plan"""
        assert not needs_human_review(BlockerObservation(title="x", description="human review"))

    def test_split_review_lines(self):
        """Automated and human-review lines are separated"""
        automated, needs_human = split_review_lines(
            "Intro\nAutomated: unit tests pass\nNeeds human: check colours\n"
            "Still needs human review: copy text\nAutomated aspects: lint"
        )

        assert automated == ["unit tests pass", "lint"]
        assert needs_human == ["check colours", "copy text"]

    def test_describe(self):
        text = describe(FindingObservation(title="Slow", description="N+1 query", file="db.py"))

        assert text == "[finding] Slow (db.py): N+1 query"
