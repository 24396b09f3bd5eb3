"""Job lifecycle, cleanup, pipeline driver and HTTP surface."""
