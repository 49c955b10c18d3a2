"""
Core business logic for the video showcase.

This module is framework-agnostic - it doesn't import FastAPI, boto3,
or any infrastructure concerns. The catalog projection and the upload
rules can be tested without a live store.
"""
