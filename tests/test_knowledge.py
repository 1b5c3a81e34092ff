"""KnowledgeBase tests — catalog loading, lookup helpers and load errors.

The shipped catalogs under ``cds_knowledge/data`` are loaded once through
the session-scoped ``kb`` fixture.  Error cases copy the catalogs into a
temporary directory and break one of them.
"""

import shutil

import pytest
import yaml
from pydantic import ValidationError

from cds_knowledge.knowledge import DEFAULT_DATA_DIR, KnowledgeBase, load_yaml
from cds_knowledge.models.enums import Acuity, ContraindicationType, EvidenceSource, Severity


class TestCatalogs:

    def test_every_catalog_is_versioned(self, kb):
        assert set(kb.versions) == {
            "red_flags",
            "diagnosis_codes",
            "contraindication_rules",
            "techniques",
            "treatment_protocols",
            "guidelines",
            "outcome_baselines",
        }
        assert kb.versions["red_flags"] == "2026.1"

    def test_rule_lookup(self, kb):
        rule = kb.get_rule("ci-cauda-equina")
        assert rule.type == ContraindicationType.ABSOLUTE
        assert rule.alert_severity == Severity.CRITICAL
        assert rule.source == EvidenceSource.RED_FLAG
        assert rule.overridable is False
        assert kb.get_rule("ci-does-not-exist") is None

    def test_rules_keep_catalog_order(self, kb):
        assert kb.rules[0].id == "ci-cauda-equina"
        assert kb.rules[-1].id == "ci-muscle-relaxant"

    def test_age_rules_have_no_keywords(self, kb):
        assert kb.get_rule("ci-elderly-general").keywords == ()
        assert kb.get_rule("ci-pediatric-cervical").keywords == ()

    def test_frequency_covers_every_acuity(self, kb):
        assert set(kb.frequency) == set(Acuity)
        assert kb.frequency[Acuity.ACUTE].initial == "3x/week for 2-4 weeks"

    def test_models_are_frozen(self, kb):
        with pytest.raises(ValidationError):
            kb.rules[0].overridable = True


class TestLookups:

    def test_baseline_by_prefix(self, kb):
        assert kb.get_baseline("M54.50").prefix == "M54.5"
        assert kb.get_baseline("M99.03").prefix == "M99.0"

    def test_baseline_falls_back_to_default(self, kb):
        assert kb.get_baseline("Z00.00").prefix == "M54.5"

    def test_protocol_lookup(self, kb):
        assert kb.find_protocol("M54.5").condition == "Acute Low Back Pain"
        assert kb.find_protocol("Z00.00") is None

    def test_codes_for_region(self, kb):
        codes = {entry.code for entry in kb.codes_for_region("thoracic")}
        assert {"M54.6", "M99.02"} <= codes
        assert kb.codes_for_region("nowhere") == []

    def test_guidelines_for_region(self, kb):
        codes = [g.code for g in kb.guidelines_for_region("Thoracic")]
        assert codes == ["CCGPP-THORACIC-2017"]

    def test_cpt_codes_case_insensitive(self, kb):
        assert "98940" in kb.cpt_codes_for("spinal manipulation")
        assert kb.cpt_codes_for("Unknown Procedure") == ()

    def test_technique_lookup(self, kb):
        assert kb.get_technique("Activator Method").category == "instrument"
        assert kb.get_technique("Nothing") is None


class TestLoadErrors:

    def test_missing_yaml_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_yaml(tmp_path / "absent.yaml")

    def test_missing_catalog_directory(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            KnowledgeBase(tmp_path).load()

    def test_duplicate_rule_id_rejected(self, tmp_path):
        data_dir = tmp_path / "data"
        shutil.copytree(DEFAULT_DATA_DIR, data_dir)
        rules_path = data_dir / "contraindication_rules.yaml"
        raw = yaml.safe_load(rules_path.read_text(encoding="utf-8"))
        raw["rules"].append(dict(raw["rules"][0]))
        rules_path.write_text(yaml.safe_dump(raw), encoding="utf-8")

        with pytest.raises(ValueError, match="ci-cauda-equina"):
            KnowledgeBase(data_dir).load()

    def test_second_load_is_noop(self, tmp_path):
        data_dir = tmp_path / "data"
        shutil.copytree(DEFAULT_DATA_DIR, data_dir)
        kb = KnowledgeBase(data_dir)
        kb.load()
        rules = kb.rules
        (data_dir / "contraindication_rules.yaml").unlink()
        kb.load()
        assert kb.rules is rules
