"""Helpers for clusters reached through a backplane API: kubeconfigs, connectivity checks, PagerDuty, Jira and monitoring."""

__version__ = "0.1.0"