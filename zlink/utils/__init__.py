"""Helpers"""
