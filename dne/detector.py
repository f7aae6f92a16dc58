from __future__ import annotations

from dataclasses import dataclass
from typing import List

from .diagnostics import Diagnostic
from .driver import AliasConfig, OverwriteSite
from .pins import Pin
from .span import FileSet, Span


@dataclass
class Finding:
    """A pinned value that an overwrite site may modify."""

    pin: Pin
    site: OverwriteSite

    def render(self, fset: FileSet) -> str:
        return f"{fset.position(self.pin.pos)}: Store detected: {fset.position(self.site.pos)}"

    def to_diagnostic(self, fset: FileSet) -> Diagnostic:
        return Diagnostic(
            message="Store detected",
            severity="warning",
            phase="detect",
            span=Span.from_pos(fset, self.site.pos),
            notes=[f"pinned at {fset.position(self.pin.pos)}"],
        )


def detect(config: AliasConfig) -> List[Finding]:
    """Run the engine once and report every pin / overwrite-site pair that may alias."""
    config.engine.run()
    findings: List[Finding] = []
    for pin, pin_handle in config.pin_queries:
        for site, site_handle in config.site_queries:
            if config.engine.may_alias(pin_handle, site_handle):
                findings.append(Finding(pin=pin, site=site))
    return findings


__all__ = ["Finding", "detect"]
