"""Telegram bot layer"""
