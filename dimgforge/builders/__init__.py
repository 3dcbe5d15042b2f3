"""Builders producing the commands of user stages."""

from dimgforge.builders.ansible import AnsibleBuilder
from dimgforge.builders.base import Builder
from dimgforge.builders.shell import ShellBuilder

__all__ = ["AnsibleBuilder", "Builder", "ShellBuilder"]
