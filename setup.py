from setuptools import setup
import os

def read_requirements():
    """Reads the requirements from requirements.txt, skipping comments."""
    reqs_file = os.path.join(os.path.dirname(__file__), 'requirements.txt')
    requirements = []
    with open(reqs_file, 'r', encoding='utf-8') as f:
        for line in f:
            line = line.split('#', 1)[0].strip()
            if line:
                requirements.append(line)
    return requirements

# Metadata lives in pyproject.toml. Dependencies are declared dynamic there,
# so setuptools takes install_requires from here.
setup(
    install_requires=read_requirements(),
)
