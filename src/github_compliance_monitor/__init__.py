"""
GitHub Compliance Monitor.

Syncs repositories, teams, security alerts and CODEOWNERS files from GitHub
into a local cache, assigns owners to findings and evaluates the compliance
policy of production repositories.
"""

__version__ = "1.0.0"
