"""KnowledgeBase — loads the YAML catalogs under ``data/`` into typed models.

This is the single source of clinical knowledge at runtime.  The base is
loaded once at startup and provides lookup by rule id, code prefix, region
and technique name.  Collections are tuples and models are frozen, so the
loaded catalogs cannot change while requests are being served.

Usage::

    kb = KnowledgeBase()            # defaults to the packaged data/ dir
    kb.load()                       # parse all YAML files

    rule = kb.get_rule("ci-cauda-equina")
    baseline = kb.get_baseline("M54.50")
"""

from __future__ import annotations

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

from cds_knowledge.models.enums import Acuity
from cds_knowledge.models.knowledge import (
    ClinicalGuideline,
    ClinicalRule,
    DiagnosisCatalogEntry,
    FrequencyGuideline,
    OutcomeBaseline,
    PatientPreference,
    RedFlagDefinition,
    Technique,
    TreatmentProtocol,
)

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent / "data"


def load_yaml(path: Path | str) -> Any:
    """Load a single YAML file and return the parsed contents."""
    if isinstance(path, str):
        path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Missing YAML file: {path}")
    with path.open("r", encoding="utf-8") as f:
        return yaml.safe_load(f)


class KnowledgeBase:
    """Loads all catalogs from the data directory and provides typed lookup.

    Attributes populated after :meth:`load`:

        red_flags        — tuple[RedFlagDefinition]
        diagnosis_codes  — tuple[DiagnosisCatalogEntry]
        rules            — tuple[ClinicalRule], catalog order
        techniques       — tuple[Technique]
        frequency        — mapping Acuity -> FrequencyGuideline
        preferences      — mapping key -> PatientPreference
        procedure_cpt    — mapping procedure name -> tuple of CPT codes
        protocols        — tuple[TreatmentProtocol]
        guidelines       — tuple[ClinicalGuideline]
        baselines        — tuple[OutcomeBaseline]; the default is first
        versions         — mapping catalog file stem -> version string
    """

    def __init__(self, data_dir: str | Path | None = None) -> None:
        self._base = Path(data_dir) if data_dir is not None else DEFAULT_DATA_DIR
        self._loaded = False

        self.red_flags: tuple[RedFlagDefinition, ...] = ()
        self.diagnosis_codes: tuple[DiagnosisCatalogEntry, ...] = ()
        self.rules: tuple[ClinicalRule, ...] = ()
        self.techniques: tuple[Technique, ...] = ()
        self.frequency: Mapping[Acuity, FrequencyGuideline] = MappingProxyType({})
        self.preferences: Mapping[str, PatientPreference] = MappingProxyType({})
        self.procedure_cpt: Mapping[str, tuple[str, ...]] = MappingProxyType({})
        self.protocols: tuple[TreatmentProtocol, ...] = ()
        self.guidelines: tuple[ClinicalGuideline, ...] = ()
        self.baselines: tuple[OutcomeBaseline, ...] = ()
        self.versions: Mapping[str, str] = MappingProxyType({})

        self._rules_by_id: Mapping[str, ClinicalRule] = MappingProxyType({})
        self._techniques_by_name: Mapping[str, Technique] = MappingProxyType({})

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Parse all YAML catalogs into typed models.

        Call this once at startup.  A second call is a no-op.  Raises
        ``FileNotFoundError`` if a catalog is missing and ``ValueError`` on
        duplicate rule ids.
        """
        if self._loaded:
            return
        versions: dict[str, str] = {}
        self._load_red_flags(versions)
        self._load_diagnosis_codes(versions)
        self._load_rules(versions)
        self._load_techniques(versions)
        self._load_protocols(versions)
        self._load_guidelines(versions)
        self._load_baselines(versions)
        self.versions = MappingProxyType(versions)
        self._loaded = True
        logger.info(
            "KnowledgeBase loaded: %d red flags, %d codes, %d rules, %d techniques, "
            "%d protocols, %d guidelines, %d baselines",
            len(self.red_flags),
            len(self.diagnosis_codes),
            len(self.rules),
            len(self.techniques),
            len(self.protocols),
            len(self.guidelines),
            len(self.baselines),
        )

    def _read(self, name: str, versions: dict[str, str]) -> dict:
        raw = load_yaml(self._base / f"{name}.yaml")
        versions[name] = str(raw.get("version", "unversioned"))
        return raw

    def _load_red_flags(self, versions: dict[str, str]) -> None:
        raw = self._read("red_flags", versions)
        self.red_flags = tuple(RedFlagDefinition(**item) for item in raw["red_flags"])

    def _load_diagnosis_codes(self, versions: dict[str, str]) -> None:
        raw = self._read("diagnosis_codes", versions)
        self.diagnosis_codes = tuple(DiagnosisCatalogEntry(**item) for item in raw["codes"])

    def _load_rules(self, versions: dict[str, str]) -> None:
        raw = self._read("contraindication_rules", versions)
        rules = tuple(ClinicalRule(**item) for item in raw["rules"])
        by_id: dict[str, ClinicalRule] = {}
        for rule in rules:
            if rule.id in by_id:
                raise ValueError(f"Duplicate contraindication rule id '{rule.id}'")
            by_id[rule.id] = rule
        self.rules = rules
        self._rules_by_id = MappingProxyType(by_id)

    def _load_techniques(self, versions: dict[str, str]) -> None:
        """Load techniques.yaml: techniques, frequency table, preferences, CPT map."""
        raw = self._read("techniques", versions)
        self.techniques = tuple(Technique(**item) for item in raw["techniques"])
        self._techniques_by_name = MappingProxyType({t.name: t for t in self.techniques})

        self.frequency = MappingProxyType({
            Acuity(acuity): FrequencyGuideline(**values)
            for acuity, values in raw["frequency"].items()
        })
        self.preferences = MappingProxyType({
            key: PatientPreference(key=key, **values)
            for key, values in raw["preferences"].items()
        })
        self.procedure_cpt = MappingProxyType({
            name: tuple(str(c) for c in codes)
            for name, codes in raw["procedure_cpt"].items()
        })

    def _load_protocols(self, versions: dict[str, str]) -> None:
        raw = self._read("treatment_protocols", versions)
        self.protocols = tuple(TreatmentProtocol(**item) for item in raw["protocols"])

    def _load_guidelines(self, versions: dict[str, str]) -> None:
        raw = self._read("guidelines", versions)
        self.guidelines = tuple(ClinicalGuideline(**item) for item in raw["guidelines"])

    def _load_baselines(self, versions: dict[str, str]) -> None:
        """Load outcome baselines, moving the declared default to the front."""
        raw = self._read("outcome_baselines", versions)
        baselines = [OutcomeBaseline(**item) for item in raw["baselines"]]
        default = raw.get("default")
        if default is not None:
            baselines.sort(key=lambda b: b.prefix != default)
        if not baselines:
            raise ValueError("outcome_baselines.yaml defines no baselines")
        self.baselines = tuple(baselines)

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def get_rule(self, rule_id: str) -> ClinicalRule | None:
        """Look up a contraindication rule by id."""
        return self._rules_by_id.get(rule_id)

    def get_technique(self, name: str) -> Technique | None:
        return self._techniques_by_name.get(name)

    def get_baseline(self, code: str) -> OutcomeBaseline:
        """Return the first baseline whose prefix starts *code*, else the default."""
        for baseline in self.baselines:
            if code.startswith(baseline.prefix):
                return baseline
        return self.baselines[0]

    def find_protocol(self, code: str) -> TreatmentProtocol | None:
        """Return the first protocol matching *code* by prefix, or None."""
        for protocol in self.protocols:
            if protocol.matches(code):
                return protocol
        return None

    def codes_for_region(self, region: str) -> list[DiagnosisCatalogEntry]:
        return [entry for entry in self.diagnosis_codes if entry.region == region]

    def guidelines_for_region(self, region: str) -> list[ClinicalGuideline]:
        lowered = region.lower()
        return [g for g in self.guidelines if lowered in g.applicable_regions]

    def cpt_codes_for(self, procedure: str) -> tuple[str, ...]:
        """CPT codes mapped to a procedure name (case-insensitive), or ()."""
        lowered = procedure.lower()
        for name, codes in self.procedure_cpt.items():
            if name.lower() == lowered:
                return codes
        return ()
