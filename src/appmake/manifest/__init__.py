"""Package descriptor synthesis and parsing."""

from appmake.manifest.consult import (
    Atom,
    Descriptor,
    DescriptorParseError,
    DescriptorParser,
    TermConsulter,
    consult,
    read_descriptor,
)
from appmake.manifest.synthesizer import (
    ManifestSynthesizer,
    ManifestValidationError,
    render_descriptor,
    render_template,
    substitute_modules,
    substitute_version,
)

__all__ = [
    "Atom",
    "Descriptor",
    "DescriptorParseError",
    "DescriptorParser",
    "ManifestSynthesizer",
    "ManifestValidationError",
    "TermConsulter",
    "consult",
    "read_descriptor",
    "render_descriptor",
    "render_template",
    "substitute_modules",
    "substitute_version",
]
