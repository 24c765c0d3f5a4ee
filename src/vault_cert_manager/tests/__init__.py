"""Vault Cert Manager Tests"""
