"""CLI tests for the review interface."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

from pattern_engine.curation import review_interface
from pattern_engine.curation.pattern_promotion import PatternSuggestionTable
from pattern_engine.utils.config import reset_config

runner = CliRunner()

CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"


@pytest.fixture(autouse=True)
def _reset_global_config() -> None:
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "ai": {"enabled": False},
                "feedback": {"audit_path": str(tmp_path / "audit.jsonl")},
                "storage": {
                    "pattern_table_path": str(tmp_path / "patterns.json"),
                    "venue_table_path": str(tmp_path / "venues.json"),
                    "suggestion_table_path": str(tmp_path / "suggestions.json"),
                    "seed_patterns_file": str(CONFIG_DIR / "seed_patterns.yaml"),
                    "seed_venues_file": str(CONFIG_DIR / "known_venues.yaml"),
                },
            }
        ),
        encoding="utf-8",
    )
    return path


def _invoke(config_path: Path, *args: str):
    return runner.invoke(review_interface.app, [*args, "--config", str(config_path)])


def test_patterns_lists_seeded_bank(config_path: Path) -> None:
    result = _invoke(config_path, "patterns", "--field", "price")

    assert result.exit_code == 0
    assert "Patterns (6)" in result.stdout


def test_extract_shows_fields(config_path: Path) -> None:
    result = _invoke(
        config_path,
        "extract",
        "FREAKY FRIDAY! Dec 20, 2024 @ 10PM at The Red Room, Poblacion. ₱500 entrance.",
        "--posted",
        "2024-12-01",
    )

    assert result.exit_code == 0
    assert "2024-12-20" in result.stdout
    assert "22:00:00" in result.stdout
    assert "The Red Room" in result.stdout


def test_confirm_and_correct_update_counters(config_path: Path) -> None:
    confirmed = _invoke(config_path, "confirm", "price-peso-sign", "--value", "₱500")
    corrected = _invoke(
        config_path, "correct", "price-peso-sign", "--original", "₱500", "--corrected", "₱300"
    )

    assert confirmed.exit_code == 0
    assert "confirmed" in confirmed.stdout
    assert "(25/26)" in confirmed.stdout
    assert corrected.exit_code == 0
    assert "corrected" in corrected.stdout
    assert "(25/27)" in corrected.stdout


def test_ambiguous_prefix_is_refused(config_path: Path) -> None:
    result = _invoke(config_path, "confirm", "price-peso")

    assert result.exit_code == 1
    assert "ambiguous" in result.stdout


def test_deactivate_hides_pattern_until_reactivated(config_path: Path) -> None:
    assert _invoke(config_path, "deactivate", "price-free").exit_code == 0

    active = _invoke(config_path, "patterns", "--field", "price")
    everything = _invoke(config_path, "patterns", "--field", "price", "--all")

    assert "Patterns (5)" in active.stdout
    assert "Patterns (6)" in everything.stdout
    assert _invoke(config_path, "activate", "price-free").exit_code == 0


def test_resolve_venue(config_path: Path) -> None:
    known = _invoke(config_path, "resolve-venue", "3TL")
    unknown = _invoke(config_path, "resolve-venue", "Xylophone Warehouse")

    assert known.exit_code == 0
    assert "3 Torre Lorenzo via alias" in known.stdout
    assert unknown.exit_code == 1
    assert "Unmatched" in unknown.stdout


def test_venue_shows_known_record(config_path: Path) -> None:
    known = _invoke(config_path, "venue", "the red room")
    unknown = _invoke(config_path, "venue", "Xylophone Warehouse")

    assert known.exit_code == 0
    assert "The Red Room" in known.stdout
    assert "Red Room Poblacion" in known.stdout
    assert "Coordinates: 14.5653, 121.0304" in known.stdout
    assert unknown.exit_code == 1
    assert "No known venue named 'Xylophone Warehouse'" in unknown.stdout


def test_learn_venue_makes_alias_resolvable(config_path: Path) -> None:
    learned = _invoke(
        config_path, "learn-venue", "Hidden Garden QC", "Hidden Garden", "--city", "Quezon City"
    )
    resolved = _invoke(config_path, "resolve-venue", "hidden garden qc")

    assert learned.exit_code == 0
    assert resolved.exit_code == 0
    assert "Hidden Garden via alias" in resolved.stdout


def test_unmatched_venues(config_path: Path) -> None:
    result = _invoke(config_path, "unmatched-venues", "Nokal", "Mystery Bar")

    assert result.exit_code == 0
    assert "- Mystery Bar" in result.stdout
    assert "- Nokal" not in result.stdout


def test_suggest_then_approve(config_path: Path, tmp_path: Path) -> None:
    queued = _invoke(
        config_path,
        "suggest",
        "--field",
        "price",
        "--regex",
        r"\bdonation\s*(?P<value>\d+)",
        "--tag",
        "peso_amount",
        "--value",
        "200",
        "--raw-text",
        "donation 200 at the door",
    )
    assert queued.exit_code == 0

    pending = PatternSuggestionTable(table_path=tmp_path / "suggestions.json").list()
    assert len(pending) == 1

    listed = _invoke(config_path, "suggestions", "list")
    approved = _invoke(config_path, "suggestions", "approve", pending[0].id, "--reviewer", "ana")
    again = _invoke(config_path, "suggestions", "approve", pending[0].id)

    assert listed.exit_code == 0
    assert "Pattern Suggestions (1)" in listed.stdout
    assert approved.exit_code == 0
    assert "Approved -> pattern" in approved.stdout
    assert again.exit_code == 1


def test_suggest_rejects_regex_without_group(config_path: Path) -> None:
    result = _invoke(
        config_path,
        "suggest",
        "--field",
        "price",
        "--regex",
        r"donation \d+",
        "--tag",
        "peso_amount",
        "--value",
        "200",
    )

    assert result.exit_code == 1


def test_export_writes_both_tables(config_path: Path, tmp_path: Path) -> None:
    out_dir = tmp_path / "export"

    result = _invoke(config_path, "export", str(out_dir))

    assert result.exit_code == 0
    assert (out_dir / "patterns.json").exists()
    assert (out_dir / "venues.json").exists()
