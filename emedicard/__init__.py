"""Django project package for the e-medical card backend."""
