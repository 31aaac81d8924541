import setuptools

with open("README.md", "r") as fh:
    long_description = fh.read()

setuptools.setup(
    name="imagepuller",
    version="0.1.0",
    author="Mark Gordon",
    author_email="msg@clinc.com",
    description="Fetch container image manifests using cluster pull secrets",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=setuptools.find_packages(exclude=["tests"]),
    classifiers=[
        "Programming Language :: Python :: 3",
        "License :: OSI Approved :: BSD License",
        "Operating System :: OS Independent",
    ],
    install_requires=[
        "requests>=2.0"
    ],
    test_suite="tests",
    python_requires=">=3.7",
)
