import setuptools

setuptools.setup(
    name="bootimg",
    version="1.0.0",
    author="The bootimg committers",
    description=("Boot image assembly, signing and verification"),
    license="Apache Software License",
    packages=setuptools.find_packages(exclude=["tests", "tests.*"]),
    python_requires=">=3.8",
    install_requires=[
        'cryptography>=3.1',
        'intelhex>=2.2.1',
        'click',
        'pyyaml>=5.1',
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": ["bootimg=bootimg.main:bootimg"]
    },
    classifiers=[
        "Programming Language :: Python :: 3",
        "Development Status :: 4 - Beta",
        "Topic :: Software Development :: Build Tools",
        "License :: OSI Approved :: Apache Software License",
    ],
)
