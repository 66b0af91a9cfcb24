"""
Job extraction strategies.

Each strategy turns a career page (or ATS API) into raw job records; the
data model shared by the scraper lives in pipeline.models.
"""

__version__ = "2.0.0"
