"""Templated description management for YouTube channels"""
