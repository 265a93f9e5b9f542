"""Notion workspace access"""
