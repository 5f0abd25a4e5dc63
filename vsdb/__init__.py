"""Disk-backed raw maps, a paged slot index and a radix-16 trie node codec."""

__version__ = "3.0.0"
__all__ = ["common", "engine", "mapx", "slot_db", "trie_nodes", "trie_codec"]