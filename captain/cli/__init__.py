"""Command line interface for captain"""
