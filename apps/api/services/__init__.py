"""
Services package for the ClinicQ API
Contains the scheduling and queue business logic
"""
