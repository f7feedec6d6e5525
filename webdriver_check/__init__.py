"""Browser automation environment checks and on-demand WebDriver sessions."""

__version__ = "0.1.0"
