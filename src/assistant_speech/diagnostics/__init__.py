"""Speech capability diagnostics."""

from assistant_speech.diagnostics.voice_diagnostics import (
    CapabilityDiagnostics,
    DiagnosticStatus,
    DiagnosticSuggestion,
    HostCapabilityProbe,
    SettingsTarget,
    SpeechCapabilityProbe,
    VoiceDiagnostic,
)

__all__ = [
    "CapabilityDiagnostics",
    "DiagnosticStatus",
    "DiagnosticSuggestion",
    "HostCapabilityProbe",
    "SettingsTarget",
    "SpeechCapabilityProbe",
    "VoiceDiagnostic",
]
