# nhclean/__init__.py
"""
nhclean - limpeza de gerações de perfis Nix e gcroots indiretos

Plans removal of old profile generations and stale auto gcroots under a
keep/keep-since retention policy, then hands over to ``nix store gc``.
"""

__version__ = "1.0.0"
