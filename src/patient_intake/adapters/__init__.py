"""Adapters layer for patient roster ingestion.

This module contains the adapters that implement the domain ports: file
decoding and parsing, patient directory backends, and phone/date helpers.
"""
