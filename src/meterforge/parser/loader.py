"""YAML parser and meter registry for MeterForge.

the registry is the source of truth for meter definitions. same deal as any
config-as-code setup: yaml files in a directory, checked into git, loaded and
validated at startup so broken meters fail before the first invoice run.
"""

from pathlib import Path
from typing import Any

import structlog
import yaml

from meterforge.compiler.sql_builder import UsageQueryCompiler
from meterforge.errors import MeterNotFoundError
from meterforge.models.meter import Meter

logger = structlog.get_logger(__name__)


class MeterRegistry:
    """Registry of meter definitions loaded from YAML."""

    def __init__(self) -> None:
        self.meters: dict[str, Meter] = {}
        self._sources: dict[str, Path | None] = {}  # meter name -> file, None if registered in code

    def load_directory(self, path: Path) -> None:
        """Load all YAML files from a directory.

        recursive, order independent. every meter is compiled once as a dry
        run after loading so schema problems surface here, not at query time.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Meters directory not found: {path}")

        yaml_files = sorted(path.glob("**/*.yaml")) + sorted(path.glob("**/*.yml"))
        if not yaml_files:
            raise ValueError(f"No YAML files found in {path}")

        for yaml_file in yaml_files:
            self._load_file(yaml_file)

        self._validate_meters()
        logger.info("meters_loaded", path=str(path), files=len(yaml_files), meters=len(self.meters))

    def _load_file(self, path: Path) -> None:
        """Parse a single YAML file. Empty files are ignored."""
        with open(path) as f:
            data = yaml.safe_load(f)

        if data is None:
            return

        for meter_data in data.get("meters", []):
            meter = self._parse_meter(meter_data)
            if meter.name in self.meters:
                raise ValueError(
                    f"Duplicate meter: {meter.name} "
                    f"(in {self._source_label(meter.name)} and {path})"
                )
            self.meters[meter.name] = meter
            self._sources[meter.name] = path

    def _parse_meter(self, data: dict[str, Any]) -> Meter:
        """Parse a meter definition.

        accepts the shorthand `aggregation: count` as well as the full
        mapping form, since count meters almost never need a field.
        """
        data = dict(data)
        aggregation = data.get("aggregation")
        if isinstance(aggregation, str):
            data["aggregation"] = {"type": aggregation}
        return Meter.model_validate(data)

    def _validate_meters(self) -> None:
        compiler = UsageQueryCompiler()
        for meter in self.meters.values():
            self._dry_run(meter, compiler)

    @staticmethod
    def _dry_run(meter: Meter, compiler: UsageQueryCompiler) -> None:
        # same checks a real request gets
        compiler.compile(meter.to_usage_query(), meter.filter_groups)

    def _source_label(self, name: str) -> str:
        source = self._sources.get(name)
        return str(source) if source is not None else "code"

    def register(self, meter: Meter) -> None:
        """Add a meter programmatically.

        the meter is dry-run compiled first, one that fails never lands in
        the registry.
        """
        if meter.name in self.meters:
            raise ValueError(
                f"Duplicate meter: {meter.name} "
                f"(already defined in {self._source_label(meter.name)})"
            )
        self._dry_run(meter, UsageQueryCompiler())
        self.meters[meter.name] = meter
        self._sources[meter.name] = None

    def get_meter(self, name: str) -> Meter:
        """Get a meter by name."""
        if name not in self.meters:
            raise MeterNotFoundError(f"Unknown meter: {name}")
        return self.meters[name]
