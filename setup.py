"""
Setup script for the RFID scanner service
"""

from setuptools import setup, find_packages
import os

# Read the README file
def read_readme():
    readme_path = os.path.join(os.path.dirname(__file__), 'README.md')
    if os.path.exists(readme_path):
        with open(readme_path, 'r', encoding='utf-8') as f:
            return f.read()
    return "Serial RFID reader connection manager and tag presentation detector"

setup(
    name="rfid-scanner",
    version="1.0.0",
    description="Serial RFID reader connection manager and tag presentation detector",
    long_description=read_readme(),
    long_description_content_type="text/markdown",
    packages=find_packages(include=["rfid_scanner", "rfid_scanner.*"]),
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Topic :: Communications",
        "Topic :: System :: Hardware",
    ],
    python_requires=">=3.8",
    install_requires=[
        "pyserial>=3.5",
        "flask>=2.0",
        "flask-socketio>=5.3",
    ],
    extras_require={
        "dev": [
            "pytest>=6.0",
            "pytest-cov>=2.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "rfid-scanner=rfid_scanner.run:main",
        ],
    },
    keywords="rfid reader serial debounce",
)
