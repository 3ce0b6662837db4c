"""
docker-sync — Mirror public container images through a GitHub Actions workflow.

The sync core decides whether an image already sits at the mirror
registry, dispatches a remote workflow when it does not, and follows the
run until the mirrored image is visible.
"""

__version__ = "1.0.0"
