"""Dimgforge: signature-cached, stage-by-stage container image builds.

A project declares dimgs (shippable images) and artifacts (intermediate
images) in a dappfile.  Each dimg is built through a fixed pipeline of
stages; every stage's signature chains its own dependency material to
the previous stage's signature, and a stage is rebuilt only when its
signature is not stored yet.  Git content enters the image as a
filtered archive once, then as incremental patches.
"""

__version__ = "0.1.0"
__description__ = "Signature-cached, stage-by-stage container image builds"

from dimgforge.core.conveyor import BuildResult, Conveyor
from dimgforge.cli.app import app as cli

__all__ = ["BuildResult", "Conveyor", "cli", "__version__"]
