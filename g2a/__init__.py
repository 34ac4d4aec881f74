"""Semantic anchor and linkage engine for Gherkin to Cypress authoring sessions."""

__version__ = "0.3.0"
