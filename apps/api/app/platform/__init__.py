"""Cross-cutting platform services shared by the domain packages."""
