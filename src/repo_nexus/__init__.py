"""RepoNexus - cached forensic analysis across GitHub and local repositories."""

__version__ = "0.1.0"
