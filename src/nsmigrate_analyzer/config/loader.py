import yaml
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..core.blockers.detector import parse_severity_overrides, parse_severity_policy
from ..core.classification.namespaces import NamespaceMapping
from ..errors import ConfigurationError
from ..models.schema import ArtifactCoordinate, Severity

def load_yaml(path: Path) -> Dict[str,Any]:
    try:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data

def load_defaults(pkg_root: Path) -> Dict[str,Any]:
    return load_yaml(pkg_root / "config" / "defaults.yml")

def load_namespace_profile(pkg_root: Path, profile: str) -> NamespaceMapping:
    """`profile` is a bundled profile name (config/namespaces/<name>.yml) or a path to a YAML file."""
    candidate = Path(profile)
    if candidate.suffix in (".yml", ".yaml") and candidate.is_file():
        path = candidate
    else:
        path = pkg_root / "config" / "namespaces" / f"{profile}.yml"
        if not path.is_file():
            raise ConfigurationError(f"Unknown namespace profile: {profile}")
    return NamespaceMapping.from_dict(load_yaml(path))

def load_replacements(pkg_root: Path) -> Dict[str,str]:
    raw = load_yaml(pkg_root / "config" / "replacements.yml").get("replacements") or {}
    return _check_replacements(raw)

def _check_replacements(raw: Any) -> Dict[str,str]:
    if not isinstance(raw, dict):
        raise ConfigurationError("replacements must be a mapping of group:name -> group:name:version")
    out: Dict[str,str] = {}
    for key, target in raw.items():
        key = str(key).strip()
        if key.count(":") != 1:
            raise ConfigurationError(f"replacement key must be group:name, got {key!r}")
        target = str(target).strip()
        if target.count(":") == 1:
            out[key] = target
            continue
        try:
            ArtifactCoordinate.parse(target)
        except ValueError as e:
            raise ConfigurationError(f"replacement for {key}: {e}")
        out[key] = target
    return out


def _merge(base: Dict[str,Any], over: Dict[str,Any]) -> Dict[str,Any]:
    out = dict(base)
    for k, v in over.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


@dataclass
class AnalyzerConfig:
    mapping: NamespaceMapping
    replacements: Dict[str, str] = field(default_factory=dict)
    max_phase_size: int = 10
    concurrency: int = 4
    max_file_mb: int = 10
    max_resolution_depth: int = 50
    repository_roots: List[Path] = field(default_factory=list)
    include_globs: List[str] = field(default_factory=list)
    exclude_globs: List[str] = field(default_factory=list)
    severity_policy: Dict[Severity, str] = field(default_factory=dict)
    rule_severity: Dict[str, Severity] = field(default_factory=dict)
    risk: Dict[str, Any] = field(default_factory=dict)

    @property
    def max_file_bytes(self) -> Optional[int]:
        return self.max_file_mb * 1024 * 1024 if self.max_file_mb > 0 else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "namespace_profile": self.mapping.name,
            "max_phase_size": self.max_phase_size,
            "concurrency": self.concurrency,
            "max_file_mb": self.max_file_mb,
            "max_resolution_depth": self.max_resolution_depth,
            "repository_roots": [str(p) for p in self.repository_roots],
            "include_globs": list(self.include_globs),
            "exclude_globs": list(self.exclude_globs),
            "severity_policy": {s.value: p for s, p in sorted(self.severity_policy.items(), key=lambda kv: -kv[0].rank)},
            "rule_severity": {r: s.value for r, s in sorted(self.rule_severity.items())},
            "replacement_count": len(self.replacements),
            "risk": self.risk,
        }


def _positive_int(raw: Dict[str,Any], key: str, minimum: int = 1) -> int:
    try:
        value = int(raw.get(key))
    except (TypeError, ValueError):
        raise ConfigurationError(f"{key} must be an integer, got {raw.get(key)!r}")
    if value < minimum:
        raise ConfigurationError(f"{key} must be at least {minimum}, got {value}")
    return value


def load_config(
    pkg_root: Path,
    user_file: Optional[Path] = None,
    overrides: Optional[Dict[str,Any]] = None,
) -> AnalyzerConfig:
    """
    Package defaults, overlaid by an optional user YAML file, overlaid by
    CLI overrides (None values are ignored). A user file may add
    `replacements`; they extend the bundled table.
    """
    raw = load_defaults(pkg_root)
    user: Dict[str,Any] = {}
    if user_file:
        user = load_yaml(Path(user_file))
        raw = _merge(raw, {k: v for k, v in user.items() if k != "replacements"})
    raw = _merge(raw, {k: v for k, v in (overrides or {}).items() if v is not None})

    replacements = load_replacements(pkg_root)
    replacements.update(_check_replacements(user.get("replacements") or {}))

    risk = raw.get("risk") or {}
    if not isinstance(risk, dict):
        raise ConfigurationError("risk must be a mapping")

    return AnalyzerConfig(
        mapping=load_namespace_profile(pkg_root, str(raw.get("namespace_profile") or "jakarta")),
        replacements=replacements,
        max_phase_size=_positive_int(raw, "max_phase_size"),
        concurrency=_positive_int(raw, "concurrency"),
        max_file_mb=_positive_int(raw, "max_file_mb", minimum=0),
        max_resolution_depth=_positive_int(raw, "max_resolution_depth"),
        repository_roots=[Path(p).expanduser() for p in raw.get("repository_roots") or []],
        include_globs=[str(g) for g in raw.get("include_globs") or []],
        exclude_globs=[str(g) for g in raw.get("exclude_globs") or []],
        severity_policy=parse_severity_policy(raw.get("severity_policy")),
        rule_severity=parse_severity_overrides(raw.get("rule_severity")),
        risk=risk,
    )
