"""APTIS Exam Platform - AI Module Initialization."""
