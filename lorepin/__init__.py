"""Shared infrastructure for the LorePin CMS services"""
