"""
Backend Scripts Module

Utility scripts for database setup and workflow inspection.

Available scripts:
    - seed_data.py: Creates directory data and a sample incident workflow
    - validate_workflow.py: Prints a workflow and its readiness report

Usage:
    python -m scripts.seed_data
    python -m scripts.validate_workflow INCIDENT_STANDARD
"""
