#!/usr/bin/env python
from setuptools import find_packages, setup

# Keep in sync with civicache/version.py, which cannot be imported before the
# requirements are installed
VERSION = "0.3.0"
INSTALL_REQUIREMENTS = [
    "Django>=4.2",
    "celery[redis]>=5.3",
    "djangorestframework>=3.14",
    "more-itertools>=9.0",
    "psycopg2-binary>=2.9",
    "redis>=4.5",
    "requests>=2.31",
    "sentry-sdk>=1.30",
    "structlog>=23.1",
    "urllib3>=1.26",
]
TEST_REQUIREMENTS = ["pytest>=7.4", "pytest-django>=4.5"]
SCRIPTS = ["manage.py"]
DESCRIPTION = "Crawler and local cache for the Civitai image and model catalog"
CLASSIFIERS = """\
Environment :: Web Environment
Framework :: Django
Programming Language :: Python
Programming Language :: Python :: 3
""".splitlines()


setup(
    name="civicache",
    version=VERSION,
    description=DESCRIPTION,
    packages=find_packages(exclude=["*.tests", "*.tests.*"]),
    include_package_data=True,
    scripts=SCRIPTS,
    install_requires=INSTALL_REQUIREMENTS,
    extras_require={"test": TEST_REQUIREMENTS},
    classifiers=CLASSIFIERS,
    python_requires=">=3.9",
)
